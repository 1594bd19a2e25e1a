from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum

from auth.google_oauth2 import generate_code_verifier, generate_state


class FlowStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class FlowSession:
    state: str = field(default_factory=generate_state)
    code_verifier: str = field(default_factory=generate_code_verifier)
    started_at: float = field(default_factory=time.time)
    status: FlowStatus = FlowStatus.PENDING

    @property
    def is_pending(self) -> bool:
        return self.status is FlowStatus.PENDING
