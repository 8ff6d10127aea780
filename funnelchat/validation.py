"""Integrity checks for authored funnels.

Problems are reported, never repaired or raised: the engine already copes with
a broken graph, these checks only tell the author where it will dead-end.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

from funnelchat.funnel import FunnelFlow
from funnelchat.stages import is_transition_stage


@dataclass(frozen=True)
class FlowIssue:
    code: str
    message: str
    block_id: Optional[str] = None


def validate_flow(flow: FunnelFlow) -> List[FlowIssue]:
    issues: List[FlowIssue] = []

    if flow.start_block_id not in flow.blocks:
        issues.append(
            FlowIssue(
                "missing_start_block",
                f"Start block {flow.start_block_id!r} does not exist",
                flow.start_block_id,
            )
        )

    for key, block in flow.blocks.items():
        if block.id != key:
            issues.append(
                FlowIssue("block_id_mismatch", f"Block stored as {key!r} has id {block.id!r}", key)
            )
        for position, option in enumerate(block.options, start=1):
            target = option.next_block_id
            if target and target not in flow.blocks:
                issues.append(
                    FlowIssue(
                        "dangling_option",
                        f"Option {position} ({option.text!r}) points at missing block {target!r}",
                        key,
                    )
                )
        for label, target in (("upsell", block.upsell_block_id), ("downsell", block.downsell_block_id)):
            if target and target not in flow.blocks:
                issues.append(
                    FlowIssue(f"dangling_{label}", f"{label.title()} target {target!r} does not exist", key)
                )

    membership: Dict[str, List[str]] = {}
    for stage in flow.stages:
        for block_id in stage.block_ids:
            if block_id not in flow.blocks:
                issues.append(
                    FlowIssue(
                        "unknown_stage_block",
                        f"Stage {stage.name!r} lists missing block {block_id!r}",
                        block_id,
                    )
                )
                continue
            membership.setdefault(block_id, []).append(stage.name)
            option_count = len(flow.blocks[block_id].options)
            if is_transition_stage(stage) and option_count != 1:
                issues.append(
                    FlowIssue(
                        "transition_option_count",
                        f"Transition block has {option_count} options; exactly one is auto-selected",
                        block_id,
                    )
                )

    if flow.stages:
        for block_id in flow.blocks:
            if block_id not in membership:
                issues.append(FlowIssue("unstaged_block", "Block belongs to no stage", block_id))

    for block_id, names in membership.items():
        if len(names) > 1:
            issues.append(
                FlowIssue(
                    "multiple_stages",
                    f"Block is listed by several stages: {', '.join(names)}",
                    block_id,
                )
            )

    return issues


def has_minimum_structure(flow: FunnelFlow) -> bool:
    """At least one stage, one block, and a start block that resolves."""
    return bool(flow.stages) and bool(flow.blocks) and flow.start_block_id in flow.blocks


__all__ = ["FlowIssue", "has_minimum_structure", "validate_flow"]
