from enum import Enum

ACTIVE_STATES = {"new", "streaming"}
TERMINAL_STATES = {"finalized"}


class SessionStatus(Enum):
    NEW = "new"
    STREAMING = "streaming"
    CLOSING = "closing"
    FINALIZED = "finalized"

    @property
    def is_active(self) -> bool:
        return self.value in ACTIVE_STATES

    @property
    def is_terminal(self) -> bool:
        return self.value in TERMINAL_STATES
