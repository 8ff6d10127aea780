"""Which options of a block can still reach a given offer."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, FrozenSet, List, Set, Tuple

if TYPE_CHECKING:  # pragma: no cover
    from funnelchat.funnel import FunnelFlow

logger = logging.getLogger("funnelchat.reachability")


def is_offer_block(block_id: str, offer_id: str) -> bool:
    return block_id == offer_id or block_id == f"offer_{offer_id}"


@dataclass
class HighlightedPath:
    """Ancestors of a block plus the option edges that lead into it."""

    blocks: Set[str] = field(default_factory=set)
    edges: Set[Tuple[str, str]] = field(default_factory=set)


class PathReachabilityIndex:
    """Reverse-graph index over one funnel.

    Predecessors are computed once. For every offer id the set of blocks that
    can reach it is collected with a single backward breadth-first walk, so
    asking about an option is a set lookup instead of a forward search.
    """

    def __init__(self, flow: "FunnelFlow"):
        self._flow = flow
        self._predecessors: Dict[str, Set[str]] = {}
        self._reaching: Dict[str, FrozenSet[str]] = {}
        self._memo: Dict[Tuple[str, str], bool] = {}
        for block_id, block in flow.blocks.items():
            for option in block.options:
                target = option.next_block_id
                if target and target in flow.blocks:
                    self._predecessors.setdefault(target, set()).add(block_id)

    def blocks_reaching(self, offer_id: str) -> FrozenSet[str]:
        """All block ids from which some option path ends at the offer."""
        cached = self._reaching.get(offer_id)
        if cached is not None:
            return cached

        seeds = [block_id for block_id in self._flow.blocks if is_offer_block(block_id, offer_id)]
        if not seeds:
            # Unknown offer ids stay out of the cache.
            return frozenset()
        visited: Set[str] = set(seeds)
        queue = deque(seeds)
        while queue:
            current = queue.popleft()
            for parent in self._predecessors.get(current, ()):
                if parent not in visited:
                    visited.add(parent)
                    queue.append(parent)

        result = frozenset(visited)
        self._reaching[offer_id] = result
        logger.debug("Indexed offer %s: %d blocks reach it", offer_id, len(result))
        return result

    def leads_to_offer(self, block_id: str, offer_id: str) -> bool:
        key = (block_id, offer_id)
        if key in self._memo:
            return self._memo[key]
        reaching = self.blocks_reaching(offer_id)
        if offer_id not in self._reaching or block_id not in self._flow.blocks:
            return False
        self._memo[key] = block_id in reaching
        return self._memo[key]

    def cache_size(self) -> Tuple[int, int]:
        """Number of indexed offers and memoised (block, offer) answers."""
        return len(self._reaching), len(self._memo)

    def options_leading_to_offer(self, block_id: str | None, offer_id: str | None) -> List[int]:
        """Indices of ``block_id``'s options whose target reaches the offer."""
        block = self._flow.get_block(block_id)
        if block is None or not offer_id:
            return []
        return [
            index
            for index, option in enumerate(block.options)
            if option.next_block_id and self.leads_to_offer(option.next_block_id, offer_id)
        ]

    def highlighted_path(self, block_id: str) -> HighlightedPath:
        """Every ancestor of ``block_id`` with the edges used to get there."""
        path = HighlightedPath()
        if block_id not in self._flow.blocks:
            return path
        path.blocks.add(block_id)
        queue = deque([block_id])
        while queue:
            current = queue.popleft()
            for parent in self._predecessors.get(current, ()):
                path.edges.add((parent, current))
                if parent not in path.blocks:
                    path.blocks.add(parent)
                    queue.append(parent)
        return path


__all__ = ["HighlightedPath", "PathReachabilityIndex", "is_offer_block"]
