"""Conversation engine that walks a funnel graph one turn at a time."""

from __future__ import annotations

import logging
import re
import time
from enum import Enum
from typing import Callable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from funnelchat.funnel import (
    ChatMessage,
    FunnelBlock,
    FunnelBlockOption,
    FunnelFlow,
    FunnelStage,
    ResumeSnapshot,
)
from funnelchat.input_resolver import resolve_input
from funnelchat.stages import (
    StageDisplayPolicy,
    default_display_policy,
    is_qualification_stage,
    is_transition_stage,
    progress_percentage,
)

logger = logging.getLogger("funnelchat.engine")

DEFAULT_DEBOUNCE_SECONDS = 1.0
PATH_ERROR_MESSAGE = "This path encountered an error. You can start over to try again."
GUIDANCE_MESSAGE = "Please choose one of the available options above."

_LINK_TOKEN = re.compile(r"[ \t]*\[LINK\]")


class OfferOutcome(str, Enum):
    BOUGHT = "bought"
    DIDNT_BUY = "didnt_buy"


class ConversationSnapshot(BaseModel):
    """Everything a caller needs to render or persist the conversation."""

    model_config = ConfigDict(populate_by_name=True)

    history: List[ChatMessage]
    current_block_id: Optional[str] = Field(default=None, alias="currentBlockId")
    options: List[FunnelBlockOption] = Field(default_factory=list)
    options_leading_to_offer: List[int] = Field(
        default_factory=list, alias="optionsLeadingToOffer"
    )
    offer_timer_block_id: Optional[str] = Field(default=None, alias="offerTimerBlockId")
    stage: Optional[str] = None
    progress: int = 0
    completed: bool = False


def compose_block_message(block: FunnelBlock, show_options: bool) -> str:
    """Bot text for ``block`` with ``[LINK]`` removed and optional numbering."""
    text = _LINK_TOKEN.sub("", block.message).strip()
    if not show_options or not block.options:
        return text
    numbered = "\n".join(
        f"{position}. {option.text}" for position, option in enumerate(block.options, start=1)
    )
    return f"{text}\n\n{numbered}" if text else numbered


class ConversationEngine:
    """Owns the cursor and transcript of a single conversation.

    The engine is synchronous: every public operation runs to completion,
    including any automatic hops through ``TRANSITION`` blocks, before it
    returns. Graph problems never raise; they end the branch and leave one
    error line in the transcript.
    """

    def __init__(
        self,
        flow: FunnelFlow,
        *,
        selected_offer: Optional[str] = None,
        display_policy: StageDisplayPolicy = default_display_policy,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.flow = flow
        self.selected_offer = selected_offer
        self._display_policy = display_policy
        self._debounce_seconds = debounce_seconds
        self._clock = clock

        self._history: List[ChatMessage] = []
        self._current_block_id: Optional[str] = None
        self._landed_block_id: Optional[str] = None
        self._offer_timer_block_id: Optional[str] = None
        self._last_input: Optional[str] = None
        self._last_input_at: Optional[float] = None

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def history(self) -> List[ChatMessage]:
        return list(self._history)

    @property
    def current_block_id(self) -> Optional[str]:
        return self._current_block_id

    @property
    def current_block(self) -> Optional[FunnelBlock]:
        return self.flow.get_block(self._current_block_id)

    @property
    def current_stage(self) -> Optional[FunnelStage]:
        return self.flow.stage_for_block(self._current_block_id)

    @property
    def offer_timer_block_id(self) -> Optional[str]:
        return self._offer_timer_block_id

    @property
    def options(self) -> List[FunnelBlockOption]:
        """Options the user may pick right now."""
        block = self.current_block
        if block is None or self._offer_timer_block_id is not None:
            return []
        return list(block.options)

    @property
    def options_leading_to_offer(self) -> List[int]:
        if not self.selected_offer or self._offer_timer_block_id is not None:
            return []
        return self.flow.reachability.options_leading_to_offer(
            self._current_block_id, self.selected_offer
        )

    @property
    def is_completed(self) -> bool:
        return (
            bool(self._history)
            and self._current_block_id is None
            and self._offer_timer_block_id is None
        )

    def snapshot(self) -> ConversationSnapshot:
        stage = self.current_stage
        return ConversationSnapshot(
            history=self.history,
            current_block_id=self._current_block_id,
            options=self.options,
            options_leading_to_offer=self.options_leading_to_offer,
            offer_timer_block_id=self._offer_timer_block_id,
            stage=stage.name if stage else None,
            progress=progress_percentage(
                self.flow, self._current_block_id, completed=self.is_completed
            ),
            completed=self.is_completed,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def start(self, resume: Optional[ResumeSnapshot] = None) -> None:
        """Reset the conversation, optionally continuing a stored transcript."""
        self._history = []
        self._current_block_id = None
        self._landed_block_id = None
        self._offer_timer_block_id = None
        self._last_input = None
        self._last_input_at = None

        if resume is not None and resume.messages:
            self._history = list(resume.messages)
            block_id = resume.current_block_id
            if block_id and self.flow.get_block(block_id) is None:
                logger.warning("Resume point %s is not part of the funnel", block_id)
                block_id = None
            self._current_block_id = block_id
            self._landed_block_id = block_id
            logger.info(
                "Resumed conversation at %s with %d messages", block_id, len(self._history)
            )
            self._settle()
            return

        start_block = self.flow.get_block(self.flow.start_block_id)
        if start_block is None:
            logger.warning("Start block %s does not exist", self.flow.start_block_id)
            self._history.append(ChatMessage.bot(PATH_ERROR_MESSAGE))
            return
        self._land(start_block)
        self._settle()

    def select_option(self, option: FunnelBlockOption, index: int) -> bool:
        """Apply a click on ``option``. Returns False when it was ignored."""
        block = self.current_block
        if block is None:
            logger.info("Ignoring option %r: conversation has ended", option.text)
            return False
        if self._offer_timer_block_id is not None:
            logger.info("Ignoring option %r: offer timer pending", option.text)
            return False
        if not 0 <= index < len(block.options) or block.options[index] != option:
            logger.warning(
                "Option %r at index %d is not offered by block %s", option.text, index, block.id
            )
            return False

        self._follow(block, option)
        self._settle()
        return True

    def submit_text(self, text: str) -> bool:
        """Handle free-text input. Returns True when it selected an option."""
        trimmed = (text or "").strip()
        if not trimmed:
            return False

        now = self._clock()
        if (
            trimmed == self._last_input
            and self._last_input_at is not None
            and now - self._last_input_at < self._debounce_seconds
        ):
            logger.debug("Dropping duplicate input %r", trimmed)
            return False
        self._last_input = trimmed
        self._last_input_at = now

        block = self.current_block
        if block is None:
            return False
        if self._offer_timer_block_id is not None:
            logger.debug("Ignoring text %r: offer timer pending", trimmed)
            return False

        options = self.options
        match = resolve_input(trimmed, options)
        if match.matched and match.index is not None:
            return self.select_option(options[match.index], match.index)

        self._history.append(ChatMessage.user(trimmed, block.id))
        self._history.append(ChatMessage.bot(GUIDANCE_MESSAGE, block.id))
        return False

    def activate_timer(self, block_id: str) -> bool:
        """Start the upsell/downsell decision for a product block."""
        block = self.flow.get_block(block_id)
        if block is None or not block.has_offer_alternates:
            logger.warning("Block %s has no upsell or downsell to wait for", block_id)
            return False

        self._offer_timer_block_id = block.id
        # The branch stays open on the offer while the decision is pending.
        if self._current_block_id is None and self._landed_block_id == block.id:
            self._current_block_id = block.id
        logger.info(
            "Offer timer started on %s (timeout=%s minutes)", block.id, block.timeout_minutes
        )
        return True

    def resolve_timer(self, outcome: Union[OfferOutcome, str]) -> bool:
        """Finish a pending offer timer. Returns True when the cursor moved."""
        outcome = OfferOutcome(outcome)
        block = self.flow.get_block(self._offer_timer_block_id)
        self._offer_timer_block_id = None
        if block is None:
            return False

        if outcome is OfferOutcome.BOUGHT:
            target_id = block.upsell_block_id
        else:
            target_id = block.downsell_block_id

        if not target_id:
            logger.info("Offer %s has no %s target", block.id, outcome.value)
            self._settle()
            return False

        target = self.flow.get_block(target_id)
        if target is None:
            logger.warning("Offer %s points at missing block %s", block.id, target_id)
            self._history.append(ChatMessage.bot(PATH_ERROR_MESSAGE))
            self._current_block_id = None
            return False

        replace = (
            outcome is OfferOutcome.DIDNT_BUY
            and bool(self._history)
            and self._history[-1].type == "bot"
        )
        self._land(target, replace_last=replace)
        self._settle()
        return True

    # ------------------------------------------------------------------
    # State machine internals
    # ------------------------------------------------------------------

    def _shows_options(self, block: FunnelBlock) -> bool:
        return self._display_policy(self.flow.stage_for_block(block.id))

    def _echoes_selection(self, stage: Optional[FunnelStage]) -> bool:
        return not is_transition_stage(stage) and self._display_policy(stage)

    def _land(self, block: FunnelBlock, *, replace_last: bool = False) -> None:
        message = ChatMessage.bot(compose_block_message(block, self._shows_options(block)), block.id)
        if replace_last:
            self._history[-1] = message
        else:
            self._history.append(message)
        self._current_block_id = block.id
        self._landed_block_id = block.id

    def _follow(self, source: FunnelBlock, option: FunnelBlockOption) -> None:
        source_stage = self.flow.stage_for_block(source.id)
        target = self.flow.get_block(option.next_block_id)
        redirect = (
            target is not None
            and is_transition_stage(source_stage)
            and is_qualification_stage(self.flow.stage_for_block(target.id))
        )

        if not redirect and self._echoes_selection(source_stage):
            self._history.append(ChatMessage.user(option.text, source.id))

        if not option.next_block_id:
            self._current_block_id = None
            return
        if target is None:
            logger.warning(
                "Option %r of %s points at missing block %s",
                option.text,
                source.id,
                option.next_block_id,
            )
            self._history.append(ChatMessage.bot(PATH_ERROR_MESSAGE))
            self._current_block_id = None
            return

        if redirect:
            self._history.append(ChatMessage.redirect_to_live_chat())
        self._land(target)

    def _settle(self) -> None:
        """Apply dead-end detection and transition auto-advance."""
        hops = 0
        while self._current_block_id is not None:
            block = self.current_block
            if block is None:
                self._current_block_id = None
                return
            if not block.options:
                if self._offer_timer_block_id != block.id:
                    self._current_block_id = None
                return
            stage = self.flow.stage_for_block(block.id)
            if not is_transition_stage(stage) or len(block.options) != 1:
                return
            hops += 1
            if hops > len(self.flow.blocks):
                logger.warning("Transition loop detected at %s", block.id)
                self._history.append(ChatMessage.bot(PATH_ERROR_MESSAGE))
                self._current_block_id = None
                return
            self._follow(block, block.options[0])


__all__ = [
    "ConversationEngine",
    "ConversationSnapshot",
    "DEFAULT_DEBOUNCE_SECONDS",
    "GUIDANCE_MESSAGE",
    "OfferOutcome",
    "PATH_ERROR_MESSAGE",
    "compose_block_message",
]
