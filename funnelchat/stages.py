"""Stage metadata: well-known stage names, display policy and progress."""

from __future__ import annotations

from typing import Callable, Optional

from funnelchat.funnel import FunnelFlow, FunnelStage

TRANSITION = "TRANSITION"
WELCOME = "WELCOME"
VALUE_DELIVERY = "VALUE_DELIVERY"
EXPERIENCE_QUALIFICATION = "EXPERIENCE_QUALIFICATION"
PAIN_POINT_QUALIFICATION = "PAIN_POINT_QUALIFICATION"
OFFER = "OFFER"

# Returns True when a stage lists its options as numbered text in the bot
# message and echoes the user's pick back into the transcript.
StageDisplayPolicy = Callable[[Optional[FunnelStage]], bool]


def is_transition_stage(stage: Optional[FunnelStage]) -> bool:
    return stage is not None and stage.name == TRANSITION


def is_product_stage(stage: Optional[FunnelStage]) -> bool:
    return stage is not None and stage.is_offer


def is_qualification_stage(stage: Optional[FunnelStage]) -> bool:
    return (
        stage is not None
        and not stage.is_offer
        and not is_transition_stage(stage)
    )


def default_display_policy(stage: Optional[FunnelStage]) -> bool:
    """Numbered text everywhere except transitions and product cards."""
    if stage is None:
        return True
    return not (is_transition_stage(stage) or is_product_stage(stage))


def options_only_policy(stage: Optional[FunnelStage]) -> bool:
    """Never render options as text; used by button-only chat surfaces."""
    return False


def progress_percentage(
    flow: FunnelFlow, block_id: Optional[str], *, completed: bool = False
) -> int:
    """Stage position over total stages, e.g. stage 2 of 5 is 40."""
    total = len(flow.stages)
    if not total:
        return 0
    if completed:
        return 100
    position = flow.stage_index(block_id)
    if position is None:
        return 0
    return round((position + 1) / total * 100)


__all__ = [
    "EXPERIENCE_QUALIFICATION",
    "OFFER",
    "PAIN_POINT_QUALIFICATION",
    "StageDisplayPolicy",
    "TRANSITION",
    "VALUE_DELIVERY",
    "WELCOME",
    "default_display_policy",
    "is_product_stage",
    "is_qualification_stage",
    "is_transition_stage",
    "options_only_policy",
    "progress_percentage",
]
