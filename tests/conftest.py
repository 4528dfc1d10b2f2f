"""Shared fixtures: fake mailbox, index, registry and a fast sync policy."""

import pytest

from onebox.application.use_cases.ingest_email import IngestEmailUseCase
from onebox.infrastructure.settings import SyncPolicy

from tests.fakes import (
    FakeConnectionFactory,
    FakeEnrichment,
    FakeMailbox,
    FakeRegistry,
    FixedClock,
    InMemoryIndex,
    RecordingEvents,
    RecordingNotifier,
    make_account,
)


@pytest.fixture
def account():
    return make_account("acct-1")


@pytest.fixture
def registry(account):
    return FakeRegistry([account])


@pytest.fixture
def index():
    return InMemoryIndex()


@pytest.fixture
def enrichment():
    return FakeEnrichment()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def events():
    return RecordingEvents()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def mailbox():
    return FakeMailbox(supports_idle=True)


@pytest.fixture
def connections(mailbox):
    return FakeConnectionFactory(mailbox)


@pytest.fixture
def ingest(index, enrichment, notifier, events, registry, clock):
    return IngestEmailUseCase(
        index=index,
        enrichment=enrichment,
        notifier=notifier,
        events=events,
        registry=registry,
        chunk_size=10,
        fetch_timeout=1.0,
        clock=clock,
    )


@pytest.fixture
def policy():
    """Timings shrunk so state-machine tests finish in well under a second each."""
    return SyncPolicy(
        chunk_size=10,
        retention_days=730,
        poll_interval=0.05,
        idle_refresh=5.0,
        reconnect_backoff=0.01,
        max_connect_attempts=3,
        connect_timeout=1.0,
        fetch_timeout=1.0,
        change_wait=0.05,
        stop_timeout=1.0,
    )
