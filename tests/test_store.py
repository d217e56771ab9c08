"""
Tests for the local record store and its repositories.
"""

from datetime import timedelta

import pytest
from conftest import BASE_TIME, make_commit, make_turn

from cogcommit.db.store import LocalStore
from cogcommit.models.commit import SyncStatus, ToolCall, Visual


class TestCommits:
    """Tests for commit CRUD."""

    def test_insert_and_get_round_trip(self, store: LocalStore):
        commit = make_commit(commit_id="c1", turns=3, project_name="demo")
        commit.sessions[0].turns[1].tool_calls = [ToolCall(id="t", name="Edit")]
        store.insert_commit(commit)

        loaded = store.get_commit("c1")
        assert loaded is not None
        assert loaded.project_name == "demo"
        assert loaded.sync_status == SyncStatus.PENDING
        assert loaded.local_version == 1
        assert loaded.cloud_version == 0
        assert [t.id for t in loaded.sessions[0].turns] == [
            t.id for t in commit.sessions[0].turns
        ]
        assert loaded.sessions[0].turns[1].tool_calls[0].name == "Edit"

    def test_datetimes_come_back_utc(self, store: LocalStore):
        store.insert_commit(make_commit(commit_id="c1"))
        loaded = store.get_commit("c1")
        assert loaded.closed_at == BASE_TIME + timedelta(hours=1)
        assert loaded.closed_at.utcoffset() == timedelta(0)

    def test_missing_commit(self, store: LocalStore):
        assert store.get_commit("nope") is None
        assert store.update_sync_status("nope", SyncStatus.SYNCED) is False

    def test_get_by_sync_status_newest_first(self, store: LocalStore):
        store.insert_commit(make_commit(commit_id="old", closed_at=BASE_TIME))
        store.insert_commit(
            make_commit(commit_id="new", closed_at=BASE_TIME + timedelta(days=1))
        )
        store.insert_commit(make_commit(commit_id="done", sync_status=SyncStatus.SYNCED))

        pending = store.get_by_sync_status(SyncStatus.PENDING)
        assert [c.id for c in pending] == ["new", "old"]

    def test_count_by_sync_status_includes_every_status(self, store: LocalStore):
        store.insert_commit(make_commit(sync_status=SyncStatus.CONFLICT))
        counts = store.count_by_sync_status()
        assert counts == {
            "pending": 0,
            "synced": 0,
            "conflict": 1,
            "error": 0,
            "filtered": 0,
        }

    def test_get_by_cloud_id_checks_column_and_primary_key(self, store: LocalStore):
        store.insert_commit(make_commit(commit_id="local", cloud_id="cloud-a"))
        store.insert_commit(make_commit(commit_id="cloud-b", cloud_id="cloud-b"))

        assert store.get_commit_by_cloud_id("cloud-a").id == "local"
        assert store.get_commit_by_cloud_id("cloud-b").id == "cloud-b"
        assert store.get_commit_by_cloud_id("cloud-c") is None

    def test_delete_cascades(self, store: LocalStore):
        store.insert_commit(make_commit(commit_id="c1"))
        store.save_visual(
            Visual(id="v1", commit_id="c1", path="/tmp/v1.png", captured_at=BASE_TIME)
        )
        assert store.delete_commit("c1") is True
        assert store.get_commit("c1") is None
        assert store.get_visual("v1") is None
        assert store.delete_commit("c1") is False


class TestSyncMetadata:
    """Tests for version and status primitives."""

    def test_update_sync_metadata_leaves_none_unchanged(self, store: LocalStore):
        store.insert_commit(make_commit(commit_id="c1"))
        store.update_sync_metadata(
            "c1",
            cloud_id="cloud-1",
            sync_status=SyncStatus.SYNCED,
            cloud_version=2,
            last_synced_at=BASE_TIME,
        )
        commit = store.get_commit("c1")
        assert commit.cloud_id == "cloud-1"
        assert commit.cloud_version == 2
        assert commit.local_version == 1
        assert commit.last_synced_at == BASE_TIME

    def test_increment_local_version(self, store: LocalStore):
        store.insert_commit(make_commit(commit_id="c1"))
        assert store.increment_local_version("c1") == 2
        assert store.increment_local_version("missing") is None

    def test_curation_edit_bumps_version_and_marks_pending(self, store: LocalStore):
        store.insert_commit(
            make_commit(
                commit_id="c1",
                sync_status=SyncStatus.SYNCED,
                cloud_version=3,
                local_version=3,
            )
        )
        commit = store.update_commit("c1", title="Renamed", published=True)

        assert commit.title == "Renamed"
        assert commit.published is True
        assert commit.local_version == 4
        assert commit.sync_status == SyncStatus.PENDING
        assert commit.has_unpushed_edits

    def test_curation_rejects_content_fields(self, store: LocalStore):
        store.insert_commit(make_commit(commit_id="c1"))
        with pytest.raises(ValueError):
            store.update_commit("c1", git_hash="abc")

    def test_reset_all_sync_status(self, store: LocalStore):
        store.insert_commit(
            make_commit(
                commit_id="c1",
                cloud_id="cloud-1",
                sync_status=SyncStatus.SYNCED,
                cloud_version=5,
                local_version=5,
            )
        )
        assert store.reset_all_sync_status() == 1

        commit = store.get_commit("c1")
        assert commit.sync_status == SyncStatus.PENDING
        assert commit.cloud_id is None
        assert commit.cloud_version == 0
        assert commit.has_unpushed_edits

    def test_failed_transaction_rolls_back(self, store: LocalStore):
        store.insert_commit(make_commit(commit_id="c1"))
        with pytest.raises(Exception):
            store.insert_commit(make_commit(commit_id="c1"))
        assert store.get_commit("c1") is not None
        assert len(store.get_by_sync_status(SyncStatus.PENDING)) == 1


class TestApplyRemoteCommit:
    def test_overwrites_content_and_marks_synced(self, store: LocalStore):
        local = make_commit(commit_id="c1", turns=2)
        store.insert_commit(local)

        incoming = make_commit(commit_id="cloud-1", turns=0, title="From cloud")
        incoming.sessions[0].id = local.sessions[0].id
        incoming.sessions[0].turns = [
            make_turn(turn_id=local.sessions[0].turns[0].id, content="edited"),
            make_turn(role="assistant", content="new turn", offset_seconds=5),
        ]

        assert store.apply_remote_commit(
            "c1", incoming, cloud_version=7, last_synced_at=BASE_TIME, local_version=7
        )

        commit = store.get_commit("c1")
        assert commit.title == "From cloud"
        assert commit.cloud_id == "cloud-1"
        assert commit.sync_status == SyncStatus.SYNCED
        assert commit.cloud_version == 7
        assert commit.local_version == 7
        assert [t.content for t in commit.sessions[0].turns] == ["edited", "new turn"]

    def test_missing_commit(self, store: LocalStore):
        assert not store.apply_remote_commit(
            "nope", make_commit(), cloud_version=1, last_synced_at=BASE_TIME
        )


class TestVisualsAndWatermark:
    def test_visual_cloud_location(self, store: LocalStore):
        store.insert_commit(make_commit(commit_id="c1"))
        store.save_visual(
            Visual(id="v1", commit_id="c1", path="/tmp/v1.png", captured_at=BASE_TIME)
        )
        store.set_visual_cloud_location("v1", "https://x/v1.png", "u/c/v1.png")

        visual = store.get_visual("v1")
        assert visual.cloud_url == "https://x/v1.png"
        assert visual.storage_key == "u/c/v1.png"
        assert visual.is_uploaded
        assert [v.id for v in store.get_visuals_for_commit("c1")] == ["v1"]

    def test_watermark(self, store: LocalStore):
        assert store.get_last_sync_time() is None
        store.set_last_sync_time("2025-01-01T00:00:00+00:00")
        store.set_last_sync_time("2025-01-02T00:00:00+00:00")
        assert store.get_last_sync_time() == "2025-01-02T00:00:00+00:00"

    def test_is_healthy(self, store: LocalStore):
        assert store.is_healthy()
