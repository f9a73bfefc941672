"""
Diagnostic log for failed provider calls.

One entry is recorded per failed dispatch (except the cases the dispatcher
skips). Entries stay in a bounded in-memory buffer for the UI layer to read
and are mirrored to the logger.
"""

import logging
from collections import deque
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class DiagnosticEntry:
    """A failed call as shown in the activity log."""
    model: str
    prompt: str
    output: str
    status: str = "Error"
    error: Optional[str] = None
    token_count: int = 0
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict:
        return asdict(self)


class DiagnosticLog:
    """Bounded buffer of diagnostic entries."""

    def __init__(self, max_entries: int = 200):
        self._entries: Deque[DiagnosticEntry] = deque(maxlen=max_entries)

    def record(self, model: str, prompt: str, error: str) -> DiagnosticEntry:
        entry = DiagnosticEntry(model=model, prompt=prompt, output=error, error=error)
        self._entries.append(entry)
        logger.warning(f"[{model}] {prompt}: {error}")
        return entry

    def entries(self) -> List[DiagnosticEntry]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
