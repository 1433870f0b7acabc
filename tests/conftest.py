"""
Shared fixtures: bundled graph and catalogs loaded once, fixed clock for
deterministic timestamps.
"""

import pytest

from pathrag.core.diagnostic_graph import DiagnosticGraph
from pathrag.core.dialogue_manager import DiagnosticDialogueManager
from pathrag.core.path_engine import PathTraversalEngine
from pathrag.persistence import InMemorySessionStore
from pathrag.utils.asset_catalog import AssetCatalog
from pathrag.utils.vendor_detection import VendorDetector

FIXED_NOW = 1732634445.123


class FakeClock:
    """Manually advanced clock"""

    def __init__(self, now=FIXED_NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture(scope="session")
def graph():
    return DiagnosticGraph.from_file()


@pytest.fixture(scope="session")
def asset_catalog():
    return AssetCatalog()


@pytest.fixture(scope="session")
def vendor_detector():
    return VendorDetector()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(graph, asset_catalog, vendor_detector, clock):
    return PathTraversalEngine(
        graph,
        asset_catalog=asset_catalog,
        vendor_detector=vendor_detector,
        clock=clock,
    )


@pytest.fixture
def store(clock):
    return InMemorySessionStore(ttl=3600, clock=clock)


@pytest.fixture
def dm(engine, store):
    return DiagnosticDialogueManager(engine, store)


def walk(engine, session, *utterances):
    """Feed utterances through evaluate + advance; returns the final session."""
    for utterance in utterances:
        _, session = engine.process(session, utterance)
    return session
