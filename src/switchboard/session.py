import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from switchboard.states import SessionStatus

if TYPE_CHECKING:
    from switchboard.aggregator import AggregateRoutingDecision, CallAnalysis
    from switchboard.complexity import JobComplexityResult

RECENT_HISTORY_SIZE = 3


@dataclass
class CallMetadata:
    customer_name: str = ""
    address: str = ""
    postcode: str = ""
    urgency: str = "Standard"
    lead_type: str = "Unknown"

    def to_dict(self) -> dict:
        return {
            "customer_name": self.customer_name,
            "address": self.address,
            "postcode": self.postcode,
            "urgency": self.urgency,
            "lead_type": self.lead_type,
        }


@dataclass
class CallSession:
    phone_number: str
    session_id: str = field(default_factory=lambda: f"call_{uuid.uuid4().hex[:12]}")
    status: SessionStatus = SessionStatus.NEW

    # Transcript (append-only)
    transcript: str = ""
    segment_log: list = field(default_factory=list)
    recent_history: deque = field(default_factory=lambda: deque(maxlen=RECENT_HISTORY_SIZE))
    segment_count: int = 0

    # Caller details picked up during the call
    metadata: CallMetadata = field(default_factory=CallMetadata)

    # Analysis
    analysis_count: int = 0
    last_analysis: Optional["CallAnalysis"] = None
    last_task_classifications: dict[str, "JobComplexityResult"] = field(default_factory=dict)
    final_decision: Optional["AggregateRoutingDecision"] = None

    # Call metadata (set when the session starts, used in the closing dump)
    start_time: float = 0.0
    started_announced: bool = False

    def append_segment(self, text: str, speaker: str = "caller", timestamp: float = 0.0) -> None:
        """Record one finalized segment. Earlier text is never rewritten."""
        self.transcript = f"{self.transcript} {text}" if self.transcript else text
        self.recent_history.append(text)
        self.segment_count += 1
        self.segment_log.append({
            "role": speaker,
            "content": text,
            "timestamp": timestamp,
            "status": self.status.value,
        })
