"""
Lightweight telemetry for the match pipeline.

Events are kept in a fixed-size ring buffer for the admin debug endpoint and
mirrored to the ``scholar_match.core.telemetry`` logger. Recording is a side
channel and must never raise into request handling.
"""

import json
import logging
import threading
import time
from collections import deque
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 200


class TelemetryStep(str, Enum):
    EMBED = "embed"
    RETRIEVE = "retrieve"
    RERANK = "rerank"
    PIPELINE = "pipeline"


class TelemetryEvent(BaseModel):
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    step: TelemetryStep
    ok: bool
    durationMs: float
    meta: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class TelemetrySink:
    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._events = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def record(
        self,
        step: TelemetryStep,
        ok: bool,
        duration_ms: float,
        meta: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        meta_with_ts = dict(meta or {})
        meta_with_ts["ts"] = int(time.time() * 1000)
        event = TelemetryEvent.model_construct(
            step=getattr(step, "value", step),
            ok=bool(ok),
            durationMs=round(float(duration_ms), 2),
            meta=meta_with_ts,
            error=None if error is None else str(error),
        )
        with self._lock:
            self._events.append(event)

        # logging swallows handler errors itself
        logger.info("[telemetry] %s", json.dumps(event.model_dump(), default=str))

    def get_recent(self, limit: int = 100) -> List[TelemetryEvent]:
        """Most recent events first."""
        if limit <= 0:
            return []
        with self._lock:
            snapshot = list(self._events)
        return list(reversed(snapshot[-limit:]))

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
