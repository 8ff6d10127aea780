"""Funnel graph definitions shared by the conversation engine and the API."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

if TYPE_CHECKING:  # pragma: no cover
    from funnelchat.reachability import PathReachabilityIndex

REDIRECT_TO_LIVE_CHAT = "redirect_to_live_chat"


class _WireModel(BaseModel):
    """Immutable model that reads and writes the camelCase funnel JSON."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class FunnelBlockOption(_WireModel):
    text: str
    next_block_id: Optional[str] = Field(default=None, alias="nextBlockId")


class FunnelBlock(_WireModel):
    """A single conversational turn."""

    id: str
    message: str = ""
    options: List[FunnelBlockOption] = Field(default_factory=list)
    upsell_block_id: Optional[str] = Field(default=None, alias="upsellBlockId")
    downsell_block_id: Optional[str] = Field(default=None, alias="downsellBlockId")
    timeout_minutes: Optional[float] = Field(default=None, alias="timeoutMinutes")
    resource_id: Optional[str] = Field(default=None, alias="resourceId")
    resource_name: Optional[str] = Field(default=None, alias="resourceName")

    @property
    def has_offer_alternates(self) -> bool:
        return bool(self.upsell_block_id or self.downsell_block_id)


class FunnelStage(_WireModel):
    id: str
    name: str
    explanation: str = ""
    block_ids: List[str] = Field(default_factory=list, alias="blockIds")
    card_type: Literal["qualification", "product"] = Field(
        default="qualification", alias="cardType"
    )

    @property
    def is_offer(self) -> bool:
        """Product cards, and stages named after the offer even without a card type."""
        return self.card_type == "product" or "OFFER" in self.name.upper()


class FunnelFlow(_WireModel):
    """The whole authored graph. Read-only for the lifetime of a conversation."""

    start_block_id: str = Field(alias="startBlockId")
    stages: List[FunnelStage] = Field(default_factory=list)
    blocks: Dict[str, FunnelBlock] = Field(default_factory=dict)

    _reachability: Any = PrivateAttr(default=None)

    def get_block(self, block_id: Optional[str]) -> Optional[FunnelBlock]:
        """Return the block stored under ``block_id`` or ``None``."""
        if not block_id:
            return None
        return self.blocks.get(block_id)

    def stage_for_block(self, block_id: Optional[str]) -> Optional[FunnelStage]:
        """Return the first stage listing ``block_id``."""
        if not block_id:
            return None
        for stage in self.stages:
            if block_id in stage.block_ids:
                return stage
        return None

    def stage_index(self, block_id: Optional[str]) -> Optional[int]:
        if not block_id:
            return None
        for position, stage in enumerate(self.stages):
            if block_id in stage.block_ids:
                return position
        return None

    def offer_blocks(self) -> List[FunnelBlock]:
        """Blocks belonging to offer stages, in stage order."""
        found: List[FunnelBlock] = []
        for stage in self.stages:
            if not stage.is_offer:
                continue
            for block_id in stage.block_ids:
                block = self.blocks.get(block_id)
                if block is not None and block not in found:
                    found.append(block)
        return found

    @property
    def reachability(self) -> "PathReachabilityIndex":
        """Path index owned by this flow, built on first use."""
        if self._reachability is None:
            from funnelchat.reachability import PathReachabilityIndex

            self._reachability = PathReachabilityIndex(self)
        return self._reachability


class MessageMetadata(_WireModel):
    block_id: Optional[str] = Field(default=None, alias="blockId")


class ChatMessage(_WireModel):
    """One transcript entry."""

    type: Literal["user", "bot", "system"]
    text: str
    metadata: Optional[MessageMetadata] = None

    @classmethod
    def bot(cls, text: str, block_id: Optional[str] = None) -> "ChatMessage":
        return cls(type="bot", text=text, metadata=_metadata(block_id))

    @classmethod
    def user(cls, text: str, block_id: Optional[str] = None) -> "ChatMessage":
        return cls(type="user", text=text, metadata=_metadata(block_id))

    @classmethod
    def redirect_to_live_chat(cls) -> "ChatMessage":
        return cls(type="system", text=REDIRECT_TO_LIVE_CHAT)

    @property
    def is_redirect(self) -> bool:
        return self.type == "system" and self.text == REDIRECT_TO_LIVE_CHAT


def _metadata(block_id: Optional[str]) -> Optional[MessageMetadata]:
    if block_id is None:
        return None
    return MessageMetadata(block_id=block_id)


class ResumeSnapshot(_WireModel):
    """Persisted conversation state handed back to the engine."""

    current_block_id: Optional[str] = Field(default=None, alias="currentBlockId")
    messages: List[ChatMessage] = Field(default_factory=list)


__all__ = [
    "REDIRECT_TO_LIVE_CHAT",
    "ChatMessage",
    "FunnelBlock",
    "FunnelBlockOption",
    "FunnelFlow",
    "FunnelStage",
    "MessageMetadata",
    "ResumeSnapshot",
]
