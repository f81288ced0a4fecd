import pytest
from unittest.mock import AsyncMock

from switchboard.extraction import (
    MetadataTracker,
    extract_postcode,
    normalize_metadata,
    normalize_postcode,
)
from switchboard.session import CallSession


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def _session_with(*segments):
    session = CallSession(phone_number="+447700900123")
    for text in segments:
        session.append_segment(text)
    return session


class TestPostcode:
    def test_normalize(self):
        assert normalize_postcode("sw1a1aa") == "SW1A 1AA"
        assert normalize_postcode("M1 1AE") == "M1 1AE"
        assert normalize_postcode("abc") == "abc"

    def test_last_mention_wins(self):
        assert extract_postcode("I was at M1 1AE but now I'm at sw1a 1aa") == "SW1A 1AA"

    def test_no_postcode(self):
        assert extract_postcode("Mount my TV") is None
        assert extract_postcode("") is None


class TestNormalizeMetadata:
    def test_name_candidates_and_company(self):
        fields = normalize_metadata({
            "nameCandidates": [{"name": "John", "confidence": 0.9}, {"name": "Jon", "confidence": 0.3}],
            "companyName": "Acme Lettings",
            "address": "12 High Street",
            "postcode": "sw1a1aa",
            "urgency": "High",
            "leadType": "Property Manager",
        })
        assert fields == {
            "customer_name": "John (Acme Lettings)",
            "address": "12 High Street",
            "postcode": "SW1A 1AA",
            "urgency": "High",
            "lead_type": "Property Manager",
        }

    def test_customer_name_fallback_and_bad_urgency(self):
        fields = normalize_metadata({"customerName": "Sarah", "urgency": "ASAP!!"})
        assert fields["customer_name"] == "Sarah"
        assert fields["urgency"] == ""

    def test_empty(self):
        assert normalize_metadata({}) == {}


class TestMerge:
    def test_first_name_wins_urgency_updates(self):
        session = _session_with()
        MetadataTracker.merge(session, {"customer_name": "John", "urgency": "High"})
        MetadataTracker.merge(session, {"customer_name": "Jonathan", "urgency": "Critical"})
        assert session.metadata.customer_name == "John"
        assert session.metadata.urgency == "Critical"

    def test_unknown_lead_type_ignored(self):
        session = _session_with()
        MetadataTracker.merge(session, {"lead_type": "Landlord"})
        MetadataTracker.merge(session, {"lead_type": "Unknown"})
        assert session.metadata.lead_type == "Landlord"


class TestMetadataTracker:
    @pytest.mark.asyncio
    async def test_postcode_every_second_segment(self):
        tracker = MetadataTracker()
        session = _session_with("I'm at SW1A 1AA")
        assert await tracker.update(session) is False
        session.append_segment("Mount my TV")
        assert await tracker.update(session) is True
        assert session.metadata.postcode == "SW1A 1AA"

    @pytest.mark.asyncio
    async def test_force_skips_throttles(self):
        tracker = MetadataTracker()
        session = _session_with("I'm at SW1A 1AA")
        await tracker.update(session, force=True)
        assert session.metadata.postcode == "SW1A 1AA"

    @pytest.mark.asyncio
    async def test_llm_throttled_by_segments_and_time(self):
        clock = FakeClock()
        extract_fn = AsyncMock(return_value={"customerName": "Sarah"})
        tracker = MetadataTracker(extract_fn=extract_fn, min_interval=10.0, clock=clock)
        session = _session_with(*["hello"] * 4)
        await tracker.update(session)
        extract_fn.assert_not_called()

        session.append_segment("my name is Sarah")
        await tracker.update(session)
        assert extract_fn.await_count == 1
        assert session.metadata.customer_name == "Sarah"

        for _ in range(5):
            session.append_segment("more")
        clock.now += 5
        await tracker.update(session)
        assert extract_fn.await_count == 1

        clock.now += 5
        await tracker.update(session)
        assert extract_fn.await_count == 2

    @pytest.mark.asyncio
    async def test_extraction_error_is_logged(self, caplog):
        extract_fn = AsyncMock(side_effect=RuntimeError("503"))
        tracker = MetadataTracker(extract_fn=extract_fn)
        session = _session_with("hello")
        assert await tracker.update(session, force=True) is False
        assert "Metadata extraction failed" in caplog.text

    @pytest.mark.asyncio
    async def test_property_manager_keywords(self):
        tracker = MetadataTracker()
        session = _session_with("I'm calling on behalf of my tenant")
        await tracker.update(session)
        assert session.metadata.lead_type == "Property Manager"

    @pytest.mark.asyncio
    async def test_extracted_lead_type_kept(self):
        extract_fn = AsyncMock(return_value={"leadType": "Commercial"})
        tracker = MetadataTracker(extract_fn=extract_fn)
        session = _session_with("we're a letting agent, our office needs shelves")
        await tracker.update(session, force=True)
        assert session.metadata.lead_type == "Commercial"
