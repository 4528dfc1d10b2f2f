import dataclasses
from datetime import timedelta

import pytest

from onebox.application.sync.supervisor import ConnectionSupervisor
from onebox.domain.errors import MailAuthError, MailTransportError
from onebox.domain.models import ConnectionState, EventType

from tests.fakes import NOW, make_rfc822, wait_until

ACCOUNT = "acct-1"


@pytest.fixture
def supervisor(registry, connections, ingest, events, policy):
    return ConnectionSupervisor(ACCOUNT, registry, connections, ingest, events, policy)


@pytest.mark.asyncio
async def test_listening_ingests_existing_then_new_mail(supervisor, mailbox, index):
    mailbox.add(make_rfc822("<first@example.com>"))

    supervisor.start()
    await wait_until(lambda: len(index.records) == 1)
    assert supervisor.state is ConnectionState.LISTENING
    assert supervisor.status().strategy is ConnectionState.LISTENING

    mailbox.add(make_rfc822("<second@example.com>"))
    await wait_until(lambda: len(index.records) == 2)
    assert mailbox.list_calls[-1].min_uid == 2

    await supervisor.stop()
    assert supervisor.state is ConnectionState.DISCONNECTED
    assert mailbox.open_connections == []


@pytest.mark.asyncio
async def test_first_sync_starts_from_last_sync(registry, connections, ingest, events, policy, mailbox, account):
    registry.accounts[ACCOUNT] = account.model_copy(update={"last_sync": NOW - timedelta(days=5)})
    supervisor = ConnectionSupervisor(ACCOUNT, registry, connections, ingest, events, policy)

    supervisor.start()
    await wait_until(lambda: len(mailbox.list_calls) >= 1)
    await supervisor.stop()

    assert mailbox.list_calls[0].since == (NOW - timedelta(days=5)).date()
    assert mailbox.list_calls[0].min_uid is None


@pytest.mark.asyncio
async def test_first_sync_without_last_sync_uses_retention_horizon(supervisor, mailbox, policy):
    supervisor.start()
    await wait_until(lambda: len(mailbox.list_calls) >= 1)
    await supervisor.stop()

    assert mailbox.list_calls[0].since == (NOW - timedelta(days=policy.retention_days)).date()


@pytest.mark.asyncio
async def test_polling_when_idle_unsupported(supervisor, mailbox, index):
    mailbox.supports_idle = False
    mailbox.add(make_rfc822("<first@example.com>"))

    supervisor.start()
    await wait_until(lambda: len(index.records) == 1)
    assert supervisor.state is ConnectionState.POLLING

    mailbox.add(make_rfc822("<second@example.com>"))
    await wait_until(lambda: len(index.records) == 2)

    await supervisor.stop()


@pytest.mark.asyncio
async def test_dwell_time_triggers_refresh(registry, connections, ingest, events, policy, mailbox, index):
    supervisor = ConnectionSupervisor(
        ACCOUNT, registry, connections, ingest, events, dataclasses.replace(policy, idle_refresh=0.15)
    )
    mailbox.add(make_rfc822("<first@example.com>"))

    supervisor.start()
    await wait_until(lambda: connections.created >= 2)
    await wait_until(lambda: supervisor.state is ConnectionState.LISTENING)
    await supervisor.stop()

    assert ConnectionState.REFRESHING in supervisor.transitions
    assert mailbox.connections[0].closed
    assert index.upserts == 1


@pytest.mark.asyncio
async def test_drop_while_listening_reconnects_without_duplicates(supervisor, registry, mailbox, index, events, connections):
    mailbox.add(make_rfc822("<first@example.com>"))
    supervisor.start()
    await wait_until(lambda: len(index.records) == 1 and supervisor.state is ConnectionState.LISTENING)

    registry.accounts[ACCOUNT] = registry.accounts[ACCOUNT].model_copy(update={"password": "rotated"})
    mailbox.drop()
    await wait_until(lambda: connections.created == 2 and supervisor.state is ConnectionState.LISTENING)
    await wait_until(lambda: not supervisor._runner.running)

    assert list(supervisor.transitions)[-4:] == [
        ConnectionState.LISTENING,
        ConnectionState.DISCONNECTED,
        ConnectionState.CONNECTING,
        ConnectionState.LISTENING,
    ]
    assert index.upserts == 1
    assert connections.accounts_seen[1].password == "rotated"
    dropped = events.of_type(EventType.DISCONNECTED)
    assert dropped and dropped[0].payload["reason"] == "dropped"
    assert len(events.of_type(EventType.CONNECTED)) == 2

    await supervisor.stop()


@pytest.mark.asyncio
async def test_auth_failure_is_terminal(supervisor, mailbox, connections, events):
    mailbox.always_fail_with = MailAuthError("bad credentials")

    supervisor.start()
    await wait_until(lambda: not supervisor.running)

    assert connections.created == 1
    assert supervisor.state is ConnectionState.DISCONNECTED
    assert "bad credentials" in supervisor.status().last_error
    assert list(supervisor.transitions)[-2:] == [ConnectionState.ERROR, ConnectionState.DISCONNECTED]
    errors = events.of_type(EventType.ERROR)
    assert len(errors) == 1
    assert errors[0].payload["kind"] == "auth"


@pytest.mark.asyncio
async def test_transport_failures_give_up_after_max_attempts(supervisor, mailbox, connections, events, registry, policy):
    mailbox.always_fail_with = MailTransportError("connection refused")

    supervisor.start()
    await wait_until(lambda: not supervisor.running)

    assert connections.created == policy.max_connect_attempts
    status = supervisor.status()
    assert status.consecutive_failures == policy.max_connect_attempts
    assert status.connected is False
    assert events.of_type(EventType.ERROR)[0].payload["kind"] == "transport"
    assert registry.last_sync_updates == []


@pytest.mark.asyncio
async def test_transient_connect_failures_recover(supervisor, mailbox, connections):
    mailbox.connect_errors = [MailTransportError("refused"), MailTransportError("refused")]

    supervisor.start()
    await wait_until(lambda: supervisor.last_sync_result is not None)

    assert connections.created == 3
    assert supervisor.state is ConnectionState.LISTENING
    assert supervisor.status().consecutive_failures == 0
    await supervisor.stop()


@pytest.mark.asyncio
async def test_inactive_account_is_not_connected(registry, connections, ingest, events, policy, account):
    registry.accounts[ACCOUNT] = account.model_copy(update={"is_active": False})
    supervisor = ConnectionSupervisor(ACCOUNT, registry, connections, ingest, events, policy)

    supervisor.start()
    await wait_until(lambda: not supervisor.running)

    assert connections.created == 0


@pytest.mark.asyncio
async def test_request_sync_runs_on_live_connection_only(supervisor, mailbox, index):
    assert supervisor.request_sync() is False

    supervisor.start()
    await wait_until(lambda: supervisor.state is ConnectionState.LISTENING)
    await wait_until(lambda: not supervisor._runner.running)
    runs = supervisor._runner.runs

    assert supervisor.request_sync() is True
    await wait_until(lambda: supervisor._runner.runs > runs)

    await supervisor.stop()
    assert supervisor.request_sync() is False


@pytest.mark.asyncio
async def test_stop_publishes_disconnected(supervisor, events):
    supervisor.start()
    await wait_until(lambda: supervisor.state is ConnectionState.LISTENING)

    await supervisor.stop()

    assert events.of_type(EventType.DISCONNECTED)[-1].payload["reason"] == "stopped"
    assert not supervisor.running


@pytest.mark.asyncio
async def test_sync_failures_after_connect_back_off_and_give_up(supervisor, mailbox, connections, events, index, policy):
    mailbox.add(make_rfc822("<first@example.com>"))
    mailbox.fail_fetch = True

    supervisor.start()
    await wait_until(lambda: not supervisor.running)

    assert connections.created == policy.max_connect_attempts
    assert supervisor.status().consecutive_failures == policy.max_connect_attempts
    assert supervisor.state is ConnectionState.DISCONNECTED
    assert index.records == {}
    assert len(events.of_type(EventType.DISCONNECTED)) == policy.max_connect_attempts
    assert events.of_type(EventType.ERROR)[0].payload["kind"] == "transport"


@pytest.mark.asyncio
async def test_completed_run_resets_failure_count(supervisor, mailbox, connections):
    mailbox.connect_errors = [MailTransportError("refused")]
    mailbox.add(make_rfc822("<first@example.com>"))

    supervisor.start()
    await wait_until(lambda: supervisor.last_sync_result is not None)

    assert connections.created == 2
    assert supervisor.status().consecutive_failures == 0
    assert supervisor.status().last_error is None
    await supervisor.stop()


@pytest.mark.asyncio
async def test_index_failure_is_retried_on_next_run(supervisor, mailbox, index, registry):
    index.fail_upsert_for = {"<first@example.com>"}
    mailbox.add(make_rfc822("<first@example.com>"))

    supervisor.start()
    await wait_until(lambda: supervisor.last_sync_result is not None)
    assert index.records == {}
    assert registry.last_sync_updates == []

    index.fail_upsert_for = set()
    mailbox.add(make_rfc822("<second@example.com>"))
    await wait_until(lambda: len(index.records) == 2)

    assert {r.message_id for r in index.records.values()} == {"<first@example.com>", "<second@example.com>"}
    assert len(registry.last_sync_updates) == 1
    await supervisor.stop()


@pytest.mark.asyncio
async def test_cursor_stays_below_failed_uid(supervisor, mailbox, index):
    mailbox.add(make_rfc822("<first@example.com>"))
    supervisor.start()
    await wait_until(lambda: len(index.records) == 1)

    index.fail_upsert_for = {"<second@example.com>"}
    mailbox.add(make_rfc822("<second@example.com>"))
    mailbox.add(make_rfc822("<third@example.com>"))
    await wait_until(lambda: len(index.records) == 2)
    await wait_until(lambda: not supervisor._runner.running)

    index.fail_upsert_for = set()
    assert supervisor.request_sync() is True
    await wait_until(lambda: len(index.records) == 3)

    assert mailbox.list_calls[-1].min_uid == 2
    await supervisor.stop()


@pytest.mark.asyncio
async def test_mail_arriving_mid_run_triggers_another_run(supervisor, mailbox, index):
    deliver = index.upsert

    async def upsert_then_deliver(record):
        await deliver(record)
        if record.message_id == "<first@example.com>":
            mailbox.add(make_rfc822("<second@example.com>"))

    index.upsert = upsert_then_deliver
    mailbox.add(make_rfc822("<first@example.com>"))

    supervisor.start()
    await wait_until(lambda: len(index.records) == 2)

    assert supervisor._runner.runs == 2
    await supervisor.stop()
