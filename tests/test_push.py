"""
Tests for the push engine.
"""

from datetime import timedelta

import pytest
from conftest import BASE_TIME, FakeRemoteClient, make_commit

from cogcommit.constants import COMMITS_TABLE, SESSIONS_TABLE, TURNS_TABLE
from cogcommit.db.store import LocalStore
from cogcommit.exceptions import NotAuthenticatedError
from cogcommit.models.commit import SyncStatus
from cogcommit.models.remote import UsageInfo
from cogcommit.sync.identifiers import to_uuid
from cogcommit.sync.push import is_syncable, push_to_cloud
from cogcommit.sync.types import PushOptions


def _options(policy, **kwargs) -> PushOptions:
    return PushOptions(retry_policy=policy, **kwargs)


class TestIsSyncable:
    def test_commit_with_turns(self):
        assert is_syncable(make_commit())

    def test_zero_turn_commit(self):
        assert not is_syncable(make_commit(turns=0))

    def test_warmup_marker_any_case(self):
        assert not is_syncable(make_commit(first_content="Please WarmUp the cache"))


class TestPushBasics:
    """Tests for pushing pending commits."""

    @pytest.mark.asyncio
    async def test_push_new_commit(self, store: LocalStore, remote: FakeRemoteClient, no_retry):
        commit = make_commit(commit_id="local-1", turns=3)
        store.insert_commit(commit)

        result = await push_to_cloud(store, remote, _options(no_retry))

        assert result.pushed == 1
        assert result.errors == []
        cloud_id = to_uuid("local-1")
        row = remote.tables[COMMITS_TABLE][cloud_id]
        assert row["version"] == 1
        assert row["user_id"] == remote.user
        assert len(remote.tables[SESSIONS_TABLE]) == 1
        assert len(remote.tables[TURNS_TABLE]) == 3

        local = store.get_commit("local-1")
        assert local.sync_status == SyncStatus.SYNCED
        assert local.cloud_id == cloud_id
        assert local.cloud_version == 1
        assert local.local_version == 1
        assert local.last_synced_at is not None

    @pytest.mark.asyncio
    async def test_repush_after_edit_is_idempotent(
        self, store: LocalStore, remote: FakeRemoteClient, no_retry
    ):
        """Re-pushing hits the same remote rows instead of creating duplicates."""
        store.insert_commit(make_commit(commit_id="local-1", turns=4))
        await push_to_cloud(store, remote, _options(no_retry))

        store.update_commit("local-1", title="Better title")
        result = await push_to_cloud(store, remote, _options(no_retry))

        assert result.pushed == 1
        assert len(remote.tables[COMMITS_TABLE]) == 1
        assert len(remote.tables[SESSIONS_TABLE]) == 1
        assert len(remote.tables[TURNS_TABLE]) == 4
        row = remote.tables[COMMITS_TABLE][to_uuid("local-1")]
        assert row["version"] == 2
        assert row["title"] == "Better title"

        local = store.get_commit("local-1")
        assert local.cloud_version == 2
        assert local.local_version == 2
        assert local.sync_status == SyncStatus.SYNCED

    @pytest.mark.asyncio
    async def test_nothing_pending(self, store: LocalStore, remote: FakeRemoteClient, no_retry):
        result = await push_to_cloud(store, remote, _options(no_retry))
        assert result.pushed == 0
        assert remote.upsert_calls == []

    @pytest.mark.asyncio
    async def test_records_origin_machine(
        self, store: LocalStore, remote: FakeRemoteClient, no_retry
    ):
        remote.machine_uuid = "99999999-0000-0000-0000-000000000000"
        store.insert_commit(make_commit(commit_id="local-1"))

        await push_to_cloud(store, remote, _options(no_retry))

        row = remote.tables[COMMITS_TABLE][to_uuid("local-1")]
        assert row["origin_machine_id"] == remote.machine_uuid

    @pytest.mark.asyncio
    async def test_not_authenticated_raises(self, store: LocalStore, remote: FakeRemoteClient):
        remote.authenticated = False
        store.insert_commit(make_commit())

        with pytest.raises(NotAuthenticatedError):
            await push_to_cloud(store, remote)
        assert remote.upsert_calls == []

    @pytest.mark.asyncio
    async def test_force_repushes_everything(
        self, store: LocalStore, remote: FakeRemoteClient, no_retry
    ):
        store.insert_commit(make_commit(commit_id="local-1"))
        await push_to_cloud(store, remote, _options(no_retry))

        result = await push_to_cloud(store, remote, _options(no_retry, force=True))

        assert result.pushed == 1
        assert len(remote.tables[COMMITS_TABLE]) == 1


class TestPushConflicts:
    @pytest.mark.asyncio
    async def test_remote_advanced_marks_conflict(
        self, store: LocalStore, remote: FakeRemoteClient, no_retry
    ):
        """A remote edit since our last push is not overwritten."""
        store.insert_commit(make_commit(commit_id="local-1"))
        await push_to_cloud(store, remote, _options(no_retry))
        cloud_id = to_uuid("local-1")

        remote.bump_commit(cloud_id, BASE_TIME + timedelta(days=1), title="Cloud title")
        store.update_commit("local-1", title="Local title")

        result = await push_to_cloud(store, remote, _options(no_retry))

        assert result.conflicts == 1
        assert result.pushed == 0
        assert store.get_commit("local-1").sync_status == SyncStatus.CONFLICT
        row = remote.tables[COMMITS_TABLE][cloud_id]
        assert row["version"] == 2
        assert row["title"] == "Cloud title"


class TestPushFiltering:
    """Tests for warm-up and empty commit filtering."""

    @pytest.mark.asyncio
    async def test_warmup_and_empty_commits_marked_synced(
        self, store: LocalStore, remote: FakeRemoteClient, no_retry
    ):
        store.insert_commit(make_commit(commit_id="warm", first_content="warmup"))
        store.insert_commit(make_commit(commit_id="empty", turns=0))
        store.insert_commit(make_commit(commit_id="real"))

        result = await push_to_cloud(store, remote, _options(no_retry))

        assert result.total_pending == 3
        assert result.filtered == 2
        assert result.pushed == 1
        assert list(remote.tables[COMMITS_TABLE]) == [to_uuid("real")]
        assert store.get_commit("warm").sync_status == SyncStatus.SYNCED
        assert store.get_commit("warm").cloud_id is None
        assert store.get_commit("empty").sync_status == SyncStatus.SYNCED


class TestPushQuota:
    """Tests for free-tier quota slicing."""

    def _insert_commits(self, store: LocalStore, count: int) -> None:
        for i in range(count):
            store.insert_commit(
                make_commit(commit_id=f"c{i}", closed_at=BASE_TIME + timedelta(hours=i))
            )

    @pytest.mark.asyncio
    async def test_pushes_most_recent_within_quota(
        self, store: LocalStore, remote: FakeRemoteClient, no_retry
    ):
        self._insert_commits(store, 10)
        remote.usage = UsageInfo(commit_count=8, commit_limit=10, tier="free")

        result = await push_to_cloud(store, remote, _options(no_retry))

        assert result.pushed == 2
        assert result.deferred == 8
        assert not result.quota_exhausted
        assert set(remote.tables[COMMITS_TABLE]) == {to_uuid("c9"), to_uuid("c8")}
        assert len(store.get_by_sync_status(SyncStatus.PENDING)) == 8

    @pytest.mark.asyncio
    async def test_quota_exhausted(self, store: LocalStore, remote: FakeRemoteClient, no_retry):
        self._insert_commits(store, 3)
        remote.usage = UsageInfo(commit_count=10, commit_limit=10, tier="free")

        result = await push_to_cloud(store, remote, _options(no_retry))

        assert result.quota_exhausted
        assert result.pushed == 0
        assert result.deferred == 3
        assert remote.upsert_calls == []
        assert len(store.get_by_sync_status(SyncStatus.PENDING)) == 3

    @pytest.mark.asyncio
    async def test_paid_tier_is_unlimited(
        self, store: LocalStore, remote: FakeRemoteClient, no_retry
    ):
        self._insert_commits(store, 3)
        remote.usage = UsageInfo(commit_count=100, commit_limit=10, tier="pro")

        result = await push_to_cloud(store, remote, _options(no_retry))

        assert result.pushed == 3
        assert result.deferred == 0


class TestPushBatching:
    @pytest.mark.asyncio
    async def test_turns_uploaded_in_batches_of_200(
        self, store: LocalStore, remote: FakeRemoteClient, no_retry
    ):
        store.insert_commit(make_commit(commit_id="big", turns=450))

        result = await push_to_cloud(store, remote, _options(no_retry))

        assert result.pushed == 1
        assert remote.count_upserts(TURNS_TABLE) == [200, 200, 50]
        assert len(remote.tables[TURNS_TABLE]) == 450


class TestPushDryRun:
    @pytest.mark.asyncio
    async def test_dry_run_counts_without_changes(
        self, store: LocalStore, remote: FakeRemoteClient
    ):
        remote.authenticated = False
        store.insert_commit(make_commit(commit_id="a", turns=3, sessions=2))
        store.insert_commit(make_commit(commit_id="warm", first_content="warmup"))

        result = await push_to_cloud(store, remote, PushOptions(dry_run=True))

        assert result.dry_run_counts.commits == 1
        assert result.dry_run_counts.sessions == 2
        assert result.dry_run_counts.turns == 6
        assert result.filtered == 1
        assert remote.upsert_calls == []
        assert store.get_commit("warm").sync_status == SyncStatus.PENDING


class TestPushRetryPolicy:
    """Tests for the engine-owned retry policy."""

    @pytest.mark.asyncio
    async def test_failed_commit_marked_error(
        self, store: LocalStore, remote: FakeRemoteClient, no_retry
    ):
        store.insert_commit(make_commit(commit_id="a"))
        remote.fail_upserts[COMMITS_TABLE] = 1

        result = await push_to_cloud(store, remote, _options(no_retry))

        assert result.pushed == 0
        assert len(result.errors) == 1
        assert "a" in result.errors[0]
        assert store.get_commit("a").sync_status == SyncStatus.ERROR

    @pytest.mark.asyncio
    async def test_engine_retries_failed_commits(
        self, store: LocalStore, remote: FakeRemoteClient, fast_retry
    ):
        store.insert_commit(make_commit(commit_id="a"))
        store.insert_commit(
            make_commit(commit_id="b", closed_at=BASE_TIME + timedelta(days=1))
        )
        remote.fail_upserts[COMMITS_TABLE] = 1

        result = await push_to_cloud(store, remote, _options(fast_retry))

        assert result.pushed == 2
        assert result.errors == []
        assert store.get_commit("a").sync_status == SyncStatus.SYNCED
        assert store.get_commit("b").sync_status == SyncStatus.SYNCED

    @pytest.mark.asyncio
    async def test_errors_only_report_final_failures(
        self, store: LocalStore, remote: FakeRemoteClient, fast_retry
    ):
        store.insert_commit(make_commit(commit_id="a"))
        remote.fail_upserts[COMMITS_TABLE] = 5

        result = await push_to_cloud(store, remote, _options(fast_retry))

        assert len(result.errors) == 1
        assert remote.count_upserts(COMMITS_TABLE) == [1, 1]

    @pytest.mark.asyncio
    async def test_retry_option_selects_errored_commits(
        self, store: LocalStore, remote: FakeRemoteClient, no_retry
    ):
        store.insert_commit(make_commit(commit_id="failed", sync_status=SyncStatus.ERROR))
        store.insert_commit(make_commit(commit_id="pending"))

        result = await push_to_cloud(store, remote, _options(no_retry, retry=True))

        assert result.pushed == 1
        assert store.get_commit("failed").sync_status == SyncStatus.SYNCED
        assert store.get_commit("pending").sync_status == SyncStatus.PENDING
