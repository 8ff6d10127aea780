"""Pydantic schemas used by the API."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from funnelchat.conversation import ConversationSnapshot, OfferOutcome
from funnelchat.funnel import FunnelFlow, ResumeSnapshot


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class FunnelCreate(_CamelModel):
    id: str = Field(..., min_length=1, description="Identifier used in conversation URLs.")
    name: str = Field(default="", description="Display name shown to admins.")
    flow: FunnelFlow


class FlowIssueRead(_CamelModel):
    code: str
    message: str
    block_id: Optional[str] = Field(default=None, alias="blockId")


class FunnelRead(_CamelModel):
    id: str
    name: str
    start_block_id: str = Field(alias="startBlockId")
    stage_count: int = Field(alias="stageCount")
    block_count: int = Field(alias="blockCount")
    offer_block_ids: List[str] = Field(default_factory=list, alias="offerBlockIds")
    issues: List[FlowIssueRead] = Field(default_factory=list)


class FunnelList(BaseModel):
    funnels: List[FunnelRead]


class ConversationCreate(_CamelModel):
    selected_offer: Optional[str] = Field(
        default=None,
        alias="selectedOffer",
        description="Offer id whose leading options should be highlighted.",
    )
    resume: Optional[ResumeSnapshot] = Field(
        default=None, description="Stored transcript to continue from."
    )


class ConversationRead(ConversationSnapshot):
    id: str
    funnel_id: str = Field(alias="funnelId")


class OptionSelect(BaseModel):
    index: int = Field(..., ge=0, description="0-based position of the option clicked.")


class TextSubmit(BaseModel):
    text: str = Field(..., max_length=2000, description="Free text typed by the user.")


class TimerActivate(_CamelModel):
    block_id: str = Field(..., min_length=1, alias="blockId")


class TimerResolve(BaseModel):
    outcome: OfferOutcome
