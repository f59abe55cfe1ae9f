"""
Per-message delivery outcomes.

Producer runners append one DeliveryEvent per attempted send, from the
driver thread or from the client's delivery threads. The orchestrator writes
the accumulated events as JSON lines at report time.
"""

import json
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

SUCCESS = "success"
ERROR = "error"


@dataclass(frozen=True)
class DeliveryEvent:
    level: str
    scenario_id: str
    trial_index: int
    message_key: int
    partition: int
    offset: int
    timestamp: str
    status: str
    error_code: Optional[str] = None
    error_reason: Optional[str] = None

    def to_json(self) -> Dict:
        data = {
            "level": self.level,
            "scenarioId": self.scenario_id,
            "trialIndex": self.trial_index,
            "messageKey": self.message_key,
            "partition": self.partition,
            "offset": self.offset,
            "timestamp": self.timestamp,
            "status": self.status,
        }
        if self.error_code is not None:
            data["errorCode"] = self.error_code
        if self.error_reason is not None:
            data["errorReason"] = self.error_reason
        return data


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class DeliveryLog:
    """Unbounded event queue; deque.append is safe across threads."""

    def __init__(self):
        self._events = deque()

    def append(self, event: DeliveryEvent):
        self._events.append(event)

    def __len__(self) -> int:
        return len(self._events)

    def events(self) -> List[DeliveryEvent]:
        return list(self._events)

    def drain(self) -> List[DeliveryEvent]:
        drained = []
        while True:
            try:
                drained.append(self._events.popleft())
            except IndexError:
                return drained

    def write_jsonl(self, path: Path) -> int:
        """Write and remove every queued event; returns the number written."""
        events = self.drain()
        if not events:
            return 0
        with open(path, "w") as f:
            for event in events:
                f.write(json.dumps(event.to_json()) + "\n")
        return len(events)
