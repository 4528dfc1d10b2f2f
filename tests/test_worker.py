from onebox.cli.worker import AccountSeed, get_accounts_from_env


def test_accounts_from_env(monkeypatch):
    monkeypatch.setenv("ONEBOX_ACCOUNTS", "work, personal,broken")
    monkeypatch.setenv("ONEBOX_WORK_EMAIL", "me@work.example.com")
    monkeypatch.setenv("ONEBOX_WORK_PASSWORD", "pw1")
    monkeypatch.setenv("ONEBOX_WORK_IMAP_HOST", "imap.work.example.com")
    monkeypatch.setenv("ONEBOX_PERSONAL_EMAIL", "me@home.example.com")
    monkeypatch.setenv("ONEBOX_PERSONAL_PASSWORD", "pw2")
    monkeypatch.setenv("ONEBOX_PERSONAL_IMAP_HOST", "imap.home.example.com")
    monkeypatch.setenv("ONEBOX_PERSONAL_IMAP_PORT", "1993")
    monkeypatch.setenv("ONEBOX_BROKEN_EMAIL", "x@example.com")

    seeds = get_accounts_from_env()

    assert seeds == [
        AccountSeed("work", "me@work.example.com", "pw1", "imap.work.example.com"),
        AccountSeed("personal", "me@home.example.com", "pw2", "imap.home.example.com", 1993),
    ]


def test_no_accounts_declared(monkeypatch):
    monkeypatch.delenv("ONEBOX_ACCOUNTS", raising=False)

    assert get_accounts_from_env() == []
