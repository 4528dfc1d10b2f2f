import psycopg
import pytest

from onebox.application.ports.account_registry import AccountEventKind
from onebox.domain.errors import AccountNotFoundError, AccountRegistryError
from onebox.infrastructure.stores.postgres_account_registry import _COLUMNS, PostgresAccountRegistry

from tests.fakes import NOW

COLUMNS = [c.strip() for c in _COLUMNS.split(",")]


class _FakeCursor:
    """Understands exactly the statements the registry issues."""

    def __init__(self, db):
        self.db = db
        self.rowcount = 0
        self._result = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=()):
        if self.db.fail:
            raise psycopg.OperationalError("server closed the connection unexpectedly")
        sql = " ".join(sql.split())
        rows = self.db.rows
        if sql.startswith("SELECT"):
            if "WHERE id = %s" in sql:
                found = [r for r in rows.values() if r["id"] == params[0]]
            elif "lower(email)" in sql:
                found = [r for r in rows.values() if r["email"].lower() == params[0].lower()]
            else:
                found = [r for r in rows.values() if r["is_active"]]
            self._result = [dict(r) for r in found]
        elif sql.startswith("INSERT"):
            row = dict(zip(COLUMNS, params))
            rows[row["id"]] = row
            self.rowcount = 1
        elif sql.startswith("UPDATE email_accounts SET last_sync"):
            when, updated, account_id = params
            self.rowcount = self._update(account_id, last_sync=when, updated_at=updated)
        elif sql.startswith("UPDATE email_accounts SET is_active"):
            active, updated, account_id = params
            self.rowcount = self._update(account_id, is_active=active, updated_at=updated)
        elif sql.startswith("DELETE"):
            self.rowcount = 1 if rows.pop(params[0], None) is not None else 0
        else:
            raise AssertionError(f"unexpected SQL: {sql}")

    def _update(self, account_id, **values):
        if account_id not in self.db.rows:
            return 0
        self.db.rows[account_id].update(values)
        return 1

    def fetchone(self):
        return self._result[0] if self._result else None

    def fetchall(self):
        return self._result


class _FakeConnection:
    def __init__(self):
        self.rows = {}
        self.fail = False
        self.commits = 0
        self.rollbacks = 0

    def cursor(self, row_factory=None):
        return _FakeCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


class _FakePostgres:
    def __init__(self):
        self.connection = _FakeConnection()


@pytest.fixture
def db():
    return _FakePostgres()


@pytest.fixture
def registry(db):
    return PostgresAccountRegistry(db)


@pytest.fixture
def announced(registry):
    seen = []

    async def listener(event):
        seen.append((event.kind, event.account_id))

    registry.subscribe(listener)
    return seen


@pytest.mark.asyncio
async def test_create_and_read_back(registry, announced):
    account = await registry.create("me@example.com", "pw", "imap.example.com")

    assert (await registry.get(account.id)).email == "me@example.com"
    assert (await registry.find_by_email("ME@example.com")).id == account.id
    assert [a.id for a in await registry.list_active()] == [account.id]
    assert announced == [(AccountEventKind.ACTIVATED, account.id)]


@pytest.mark.asyncio
async def test_inactive_account_is_not_announced_or_listed(registry, announced):
    await registry.create("me@example.com", "pw", "imap.example.com", is_active=False)

    assert await registry.list_active() == []
    assert announced == []


@pytest.mark.asyncio
async def test_update_last_sync(registry):
    account = await registry.create("me@example.com", "pw", "imap.example.com")

    await registry.update_last_sync(account.id, NOW)

    assert (await registry.get(account.id)).last_sync == NOW


@pytest.mark.asyncio
async def test_activation_lifecycle_is_announced(registry, announced):
    account = await registry.create("me@example.com", "pw", "imap.example.com")

    await registry.set_active(account.id, False)
    await registry.set_active(account.id, True)
    await registry.delete(account.id)

    assert [kind for kind, _ in announced] == [
        AccountEventKind.ACTIVATED,
        AccountEventKind.DEACTIVATED,
        AccountEventKind.ACTIVATED,
        AccountEventKind.DELETED,
    ]
    assert await registry.get(account.id) is None


@pytest.mark.asyncio
async def test_unknown_account_mutations_raise(registry):
    with pytest.raises(AccountNotFoundError):
        await registry.set_active("missing", True)
    with pytest.raises(AccountNotFoundError):
        await registry.delete("missing")


@pytest.mark.asyncio
async def test_failing_listener_does_not_block_others(registry):
    seen = []

    async def broken(event):
        raise RuntimeError("listener bug")

    async def healthy(event):
        seen.append(event.kind)

    registry.subscribe(broken)
    registry.subscribe(healthy)

    await registry.create("me@example.com", "pw", "imap.example.com")

    assert seen == [AccountEventKind.ACTIVATED]


@pytest.mark.asyncio
async def test_database_errors_are_translated(registry, db):
    db.connection.fail = True

    with pytest.raises(AccountRegistryError):
        await registry.get("any")
    with pytest.raises(AccountRegistryError):
        await registry.update_last_sync("any", NOW)
    assert db.connection.rollbacks == 1
