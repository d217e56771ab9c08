"""
Tests for the command-line interface.
"""

import pytest
from conftest import FakeRemoteClient, make_commit
from typer.testing import CliRunner

from cogcommit import cli
from cogcommit.constants import COMMITS_TABLE
from cogcommit.db.store import LocalStore
from cogcommit.models.commit import SyncStatus

runner = CliRunner()


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'cli.db'}"


@pytest.fixture
def remote() -> FakeRemoteClient:
    return FakeRemoteClient()


@pytest.fixture(autouse=True)
def wired(monkeypatch, db_url, remote):
    """Point the CLI at a file-backed store and the in-memory remote."""
    monkeypatch.setattr(cli, "_init_logging", lambda: None)
    monkeypatch.setattr(cli, "_open_store", lambda: LocalStore.open(db_url))
    monkeypatch.setattr(cli, "_open_client", lambda: remote)


@pytest.fixture
def local(db_url):
    store = LocalStore.open(db_url)
    yield store
    store.close()


def _add(db_url: str, *commits) -> None:
    store = LocalStore.open(db_url)
    try:
        for commit in commits:
            store.insert_commit(commit)
    finally:
        store.close()


def _status(db_url: str, commit_id: str) -> SyncStatus:
    store = LocalStore.open(db_url)
    try:
        return store.get_commit(commit_id).sync_status
    finally:
        store.close()


class TestPushCommand:
    def test_push(self, db_url, remote):
        _add(db_url, make_commit(commit_id="c1"), make_commit(commit_id="c2"))

        result = runner.invoke(cli.app, ["push"])

        assert result.exit_code == 0
        assert "Pushed 2 commit(s)" in result.stdout
        assert len(remote.tables[COMMITS_TABLE]) == 2
        assert _status(db_url, "c1") == SyncStatus.SYNCED

    def test_nothing_to_push(self):
        result = runner.invoke(cli.app, ["push"])
        assert result.exit_code == 0
        assert "up to date" in result.stdout

    def test_dry_run(self, db_url, remote):
        _add(db_url, make_commit(commit_id="c1", turns=3))

        result = runner.invoke(cli.app, ["push", "--dry-run"])

        assert result.exit_code == 0
        assert "Dry run" in result.stdout
        assert "Commits: 1" in result.stdout
        assert "Turns: 3" in result.stdout
        assert remote.upsert_calls == []

    def test_not_authenticated(self, db_url, remote):
        _add(db_url, make_commit(commit_id="c1"))
        remote.authenticated = False

        result = runner.invoke(cli.app, ["push"])

        assert result.exit_code == 1
        assert "Error" in result.stdout

    def test_errors_exit_nonzero(self, db_url, remote, monkeypatch):
        monkeypatch.setattr(cli.settings, "sync_max_retries", 0)
        _add(db_url, make_commit(commit_id="c1"))
        remote.fail_upserts[COMMITS_TABLE] = 5

        result = runner.invoke(cli.app, ["push"])

        assert result.exit_code == 1
        assert "error(s)" in result.stdout


class TestPullCommand:
    def test_pull(self, db_url, remote):
        remote.seed_commit(make_commit(commit_id="from-laptop"))

        result = runner.invoke(cli.app, ["pull"])

        assert result.exit_code == 0
        assert "Pulled 1 commit(s)" in result.stdout


class TestSyncCommand:
    def test_sync(self, db_url, remote):
        _add(db_url, make_commit(commit_id="c1"))
        remote.seed_commit(make_commit(commit_id="from-laptop"))

        result = runner.invoke(cli.app, ["sync"])

        assert result.exit_code == 0
        assert "1 pulled, 1 pushed" in result.stdout

    def test_status_flag(self, db_url):
        _add(db_url, make_commit(), make_commit())

        result = runner.invoke(cli.app, ["sync", "--status"])

        assert result.exit_code == 0
        assert "Pending: 2" in result.stdout
        assert "Cloud: connected" in result.stdout

    def test_status_command_offline(self, remote):
        remote.authenticated = False

        result = runner.invoke(cli.app, ["status"])

        assert result.exit_code == 0
        assert "Cloud: offline" in result.stdout
        assert "Last pull: never" in result.stdout


class TestConflictCommands:
    def _conflict(self, db_url, remote) -> None:
        commit = make_commit(commit_id="local-1")
        _add(db_url, commit)
        cloud_id = remote.seed_commit(commit, version=2)
        store = LocalStore.open(db_url)
        try:
            store.update_sync_metadata(
                "local-1",
                cloud_id=cloud_id,
                sync_status=SyncStatus.CONFLICT,
                cloud_version=1,
                local_version=2,
            )
        finally:
            store.close()

    def test_no_conflicts(self):
        result = runner.invoke(cli.app, ["conflicts"])
        assert "No conflicts" in result.stdout

    def test_list_and_resolve(self, db_url, remote):
        self._conflict(db_url, remote)

        listed = runner.invoke(cli.app, ["conflicts"])
        assert "local-1" in listed.stdout

        resolved = runner.invoke(cli.app, ["resolve", "local-1", "--keep", "cloud"])
        assert resolved.exit_code == 0
        assert "Resolved local-1: kept cloud" in resolved.stdout
        assert _status(db_url, "local-1") == SyncStatus.SYNCED

    def test_resolve_unknown(self):
        result = runner.invoke(cli.app, ["resolve", "nope", "--keep", "local"])
        assert result.exit_code == 1

    def test_resolve_invalid_side(self):
        result = runner.invoke(cli.app, ["resolve", "nope", "--keep", "both"])
        assert result.exit_code == 2


class TestCloudClearCommand:
    def test_clear_with_confirmation_flag(self, db_url, remote):
        _add(db_url, make_commit(commit_id="c1"))
        runner.invoke(cli.app, ["push"])

        result = runner.invoke(cli.app, ["cloud-clear", "--yes"])

        assert result.exit_code == 0
        assert "Deleted 1 commit(s) and 1 session(s)" in result.stdout
        assert remote.tables[COMMITS_TABLE] == {}
        assert _status(db_url, "c1") == SyncStatus.PENDING

    def test_declined(self, db_url, remote):
        remote.seed_commit(make_commit())

        result = runner.invoke(cli.app, ["cloud-clear"], input="n\n")

        assert result.exit_code == 1
        assert len(remote.tables[COMMITS_TABLE]) == 1
