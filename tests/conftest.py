import pytest

from switchboard.aggregator import CallAnalyzer
from switchboard.catalog import CatalogCache, static_loader
from switchboard.detector import TaskDetector
from switchboard.events import EventBus
from switchboard.monitor import CallMonitor
from switchboard.session import CallSession
from switchboard.splitter import TaskSplitter

from sample_catalog import SHELF, TAP, TV


@pytest.fixture
def catalog_items():
    return [TAP, TV, SHELF]


@pytest.fixture
def catalog(catalog_items):
    return CatalogCache(static_loader(catalog_items))


@pytest.fixture
def session():
    return CallSession(phone_number="+447700900123")


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def events(bus):
    """Every event emitted on ``bus``, in order."""
    received = []
    bus.subscribe(received.append)
    return received


@pytest.fixture
def make_monitor(catalog, session, bus):
    """Build a keyword-only monitor with short debounce windows.

    Pass ``split_fn`` / ``assess_fn`` to script the language-model pieces.
    """
    def _make(split_fn=None, assess_fn=None, analysis_debounce=0.02, tier2_debounce=0.04, **kwargs):
        analyzer = CallAnalyzer(catalog, TaskSplitter(split_fn=split_fn), TaskDetector())
        return CallMonitor(
            session=session,
            analyzer=analyzer,
            bus=bus,
            assess_fn=assess_fn,
            analysis_debounce=analysis_debounce,
            tier2_debounce=tier2_debounce,
            **kwargs,
        )
    return _make
