from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Dict, List, Optional


class PipelineState(str, Enum):
    RECEIVED = "received"
    INFERRING = "inferring"
    CLASSIFYING = "classifying"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES = {PipelineState.COMPLETED, PipelineState.FAILED}


@dataclass
class RunRecord:
    state: PipelineState = PipelineState.RECEIVED
    prediction_id: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    history: List[PipelineState] = field(default_factory=lambda: [PipelineState.RECEIVED])
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "state": self.state.value,
            "history": [state.value for state in self.history],
            "updated_at": self.updated_at.isoformat(),
        }
        if self.prediction_id is not None:
            payload["prediction_id"] = self.prediction_id
        if self.error is not None:
            payload["error"] = self.error
            payload["error_kind"] = self.error_kind
        return payload


class RunStore:
    """Thread-safe in-memory registry of pipeline runs.

    Holds at most ``max_records`` runs; the oldest finished runs are evicted
    first. Runs still in flight are never evicted.
    """

    def __init__(self, max_records: int = 1000) -> None:
        if max_records < 1:
            raise ValueError("max_records must be positive")
        self._runs: "OrderedDict[str, RunRecord]" = OrderedDict()
        self._max_records = max_records
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._runs)

    def create(self, run_id: str) -> RunRecord:
        with self._lock:
            record = RunRecord()
            self._runs.pop(run_id, None)
            self._runs[run_id] = record
            self._evict()
            return record

    def _evict(self) -> None:
        excess = len(self._runs) - self._max_records
        if excess <= 0:
            return
        finished = [run_id for run_id, record in self._runs.items() if record.state in TERMINAL_STATES]
        for run_id in finished[:excess]:
            del self._runs[run_id]

    def get(self, run_id: str) -> RunRecord:
        with self._lock:
            if run_id not in self._runs:
                raise KeyError(run_id)
            return self._runs[run_id]

    def advance(self, run_id: str, state: PipelineState) -> RunRecord:
        with self._lock:
            record = self._runs[run_id]
            if record.state in TERMINAL_STATES:
                raise ValueError(f"Run {run_id} already {record.state.value}")
            record.state = state
            record.history.append(state)
            record.updated_at = datetime.now(timezone.utc)
            return record

    def mark_completed(self, run_id: str, prediction_id: str) -> RunRecord:
        record = self.advance(run_id, PipelineState.COMPLETED)
        with self._lock:
            record.prediction_id = prediction_id
            return record

    def mark_failed(self, run_id: str, message: str, kind: Optional[str] = None) -> RunRecord:
        record = self.advance(run_id, PipelineState.FAILED)
        with self._lock:
            record.error = message
            record.error_kind = kind
            return record
