"""Storage helpers for funnel definitions and live preview conversations."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import Lock
from typing import Dict, List
from uuid import uuid4

from pydantic import BaseModel, Field

from funnelchat.conversation import ConversationEngine
from funnelchat.funnel import FunnelFlow

logger = logging.getLogger("funnelchat.store")


class FunnelRecord(BaseModel):
    """A named funnel definition."""

    id: str
    name: str = ""
    flow: FunnelFlow

    model_config = {"populate_by_name": True}


class FunnelStore:
    """Tiny JSON-backed funnel catalogue."""

    def __init__(self, path: Path):
        self._path = path
        self._lock = Lock()
        self._funnels: Dict[str, FunnelRecord] = {}
        self._load()

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text("utf-8"))
        except json.JSONDecodeError:
            logger.warning("Funnel catalogue %s is not valid JSON; starting empty", self._path)
            data = []
        for item in data:
            record = FunnelRecord.model_validate(item)
            self._funnels[record.id] = record

    def _save(self) -> None:
        payload = [
            record.model_dump(mode="json", by_alias=True) for record in self._funnels.values()
        ]
        self._path.write_text(json.dumps(payload, indent=2), "utf-8")

    def list_funnels(self) -> List[FunnelRecord]:
        with self._lock:
            return sorted(self._funnels.values(), key=lambda f: f.id)

    def add_funnel(self, record: FunnelRecord) -> FunnelRecord:
        with self._lock:
            self._funnels[record.id] = record
            self._save()
            return record

    def get(self, funnel_id: str) -> FunnelRecord:
        with self._lock:
            if funnel_id not in self._funnels:
                raise KeyError(f"Funnel {funnel_id} not found")
            return self._funnels[funnel_id]


class ConversationEntry(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    funnel_id: str
    engine: ConversationEngine

    model_config = {"arbitrary_types_allowed": True}


class ConversationRegistry:
    """In-memory map of preview conversations; nothing outlives the process.

    At most ``max_entries`` conversations are kept. Adding one more drops the
    oldest.
    """

    def __init__(self, max_entries: int = 1000) -> None:
        self._lock = Lock()
        self._max_entries = max_entries
        self._entries: Dict[str, ConversationEntry] = {}

    def add(self, funnel_id: str, engine: ConversationEngine) -> ConversationEntry:
        entry = ConversationEntry(funnel_id=funnel_id, engine=engine)
        with self._lock:
            self._entries[entry.id] = entry
            while len(self._entries) > self._max_entries:
                oldest = next(iter(self._entries))
                del self._entries[oldest]
                logger.info("Evicted conversation %s", oldest)
        return entry

    def remove(self, conversation_id: str) -> None:
        with self._lock:
            if self._entries.pop(conversation_id, None) is None:
                raise KeyError(f"Conversation {conversation_id} not found")

    def get(self, conversation_id: str) -> ConversationEntry:
        with self._lock:
            if conversation_id not in self._entries:
                raise KeyError(f"Conversation {conversation_id} not found")
            return self._entries[conversation_id]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
