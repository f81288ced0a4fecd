import logging
import re
import time
from typing import Awaitable, Callable, Optional

from switchboard.safety import detect_property_manager
from switchboard.session import CallSession

logger = logging.getLogger(__name__)

POSTCODE_RE = re.compile(r"\b([A-Z]{1,2}\d{1,2}[A-Z]?\s?\d[A-Z]{2})\b", re.IGNORECASE)

POSTCODE_EVERY_N_SEGMENTS = 2
POSTCODE_MIN_CHARS = 100
METADATA_EVERY_N_SEGMENTS = 5
METADATA_MIN_CHARS = 150
METADATA_MIN_INTERVAL_SECONDS = 10.0

URGENCY_LEVELS = {"Critical", "High", "Standard", "Low"}

ExtractFn = Callable[[str], Awaitable[dict]]


def normalize_postcode(postcode: str) -> str:
    """'sw1a1aa' -> 'SW1A 1AA'. Strings of the wrong length are returned unchanged."""
    cleaned = re.sub(r"\s", "", postcode).upper()
    if len(cleaned) < 5 or len(cleaned) > 7:
        return postcode
    return f"{cleaned[:-3]} {cleaned[-3:]}"


def extract_postcode(text: str) -> Optional[str]:
    """Return the last UK postcode mentioned in the text, normalized."""
    matches = POSTCODE_RE.findall(text or "")
    if not matches:
        return None
    return normalize_postcode(matches[-1])


def normalize_metadata(parsed: dict) -> dict:
    """Flatten a raw extraction response into CallMetadata field names."""
    if not parsed:
        return {}
    company = parsed.get("companyName") or ""
    name = ""
    candidates = parsed.get("nameCandidates")
    if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict):
        name = str(candidates[0].get("name") or "")
    if not name:
        name = str(parsed.get("customerName") or "")
    if name and company and "(" not in name:
        name = f"{name} ({company})"

    postcode = parsed.get("postcode") or ""
    urgency = parsed.get("urgency") or ""
    return {
        "customer_name": name,
        "address": str(parsed.get("address") or ""),
        "postcode": normalize_postcode(str(postcode)) if postcode else "",
        "urgency": urgency if urgency in URGENCY_LEVELS else "",
        "lead_type": str(parsed.get("leadType") or ""),
    }


class MetadataTracker:
    """Keeps a session's caller details current while the call runs.

    The postcode regex is cheap and runs often; the language-model extraction
    is throttled by segment count, transcript length and wall time.
    """

    def __init__(
        self,
        extract_fn: Optional[ExtractFn] = None,
        min_interval: float = METADATA_MIN_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.extract_fn = extract_fn
        self.min_interval = min_interval
        self.clock = clock
        self._last_llm_at: Optional[float] = None

    def _postcode_due(self, session: CallSession) -> bool:
        if session.metadata.postcode:
            return False
        return (
            session.segment_count % POSTCODE_EVERY_N_SEGMENTS == 0
            or len(session.transcript) > POSTCODE_MIN_CHARS
        )

    def _llm_due(self, session: CallSession) -> bool:
        if self.extract_fn is None:
            return False
        if self._last_llm_at is not None and self.clock() - self._last_llm_at < self.min_interval:
            return False
        return (
            session.segment_count % METADATA_EVERY_N_SEGMENTS == 0
            or len(session.transcript) > METADATA_MIN_CHARS
        )

    async def update(self, session: CallSession, force: bool = False) -> bool:
        """Refresh session.metadata. Returns True if anything changed.

        ``force`` skips the throttles; used for the final pass on close.
        """
        meta = session.metadata
        before = meta.to_dict()

        if force or self._postcode_due(session):
            postcode = extract_postcode(session.transcript)
            if postcode and not meta.postcode:
                meta.postcode = postcode
                logger.info(f"[{session.session_id}] Postcode detected: {postcode}")

        if self.extract_fn is not None and (force or self._llm_due(session)):
            self._last_llm_at = self.clock()
            try:
                self.merge(session, normalize_metadata(await self.extract_fn(session.transcript)))
            except Exception as e:
                logger.error(f"[{session.session_id}] Metadata extraction failed: {e}")

        if meta.lead_type in ("", "Unknown", "Homeowner") and detect_property_manager(session.transcript):
            meta.lead_type = "Property Manager"

        changed = meta.to_dict() != before
        if changed:
            logger.debug(f"[{session.session_id}] Metadata updated: {meta.to_dict()}")
        return changed

    @staticmethod
    def merge(session: CallSession, fields: dict) -> None:
        """First non-empty name, address and postcode win. Urgency and lead type may change."""
        meta = session.metadata
        for key in ("customer_name", "address", "postcode"):
            if fields.get(key) and not getattr(meta, key):
                setattr(meta, key, fields[key])
        if fields.get("urgency"):
            meta.urgency = fields["urgency"]
        if fields.get("lead_type") and fields["lead_type"] != "Unknown":
            meta.lead_type = fields["lead_type"]
