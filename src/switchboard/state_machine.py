import logging

from switchboard.session import CallSession
from switchboard.states import SessionStatus

logger = logging.getLogger(__name__)


TRANSITIONS = {
    SessionStatus.NEW: {SessionStatus.STREAMING, SessionStatus.CLOSING},
    SessionStatus.STREAMING: {SessionStatus.CLOSING},
    SessionStatus.CLOSING: {SessionStatus.FINALIZED},
    SessionStatus.FINALIZED: set(),
}


def valid_transitions(status: SessionStatus) -> set[SessionStatus]:
    return TRANSITIONS.get(status, set())


def can_advance(session: CallSession, new_status: SessionStatus) -> bool:
    return new_status in valid_transitions(session.status)


def advance(session: CallSession, new_status: SessionStatus) -> bool:
    """Move the session to ``new_status`` if the transition table allows it.

    Illegal moves are logged and ignored so lifecycle misuse from a transport
    (late segments, double close) can never raise into the caller.
    """
    if not can_advance(session, new_status):
        logger.warning(
            "[%s] Ignoring illegal transition %s -> %s",
            session.session_id,
            session.status.value,
            new_status.value,
        )
        return False
    logger.debug(f"[{session.session_id}] {session.status.value} -> {new_status.value}")
    session.status = new_status
    return True
