"""Tests for the reconciliation engine."""

import asyncio
from unittest.mock import Mock

import pytest

from conftest import FOLDER_ID, InMemoryStore, write_files
from drivemirror.api_clients import RemoteDeleteFailed, RemoteListFailed, RemoteWriteFailed
from drivemirror.auth import AuthFailed
from drivemirror.config import ConfigurationError
from drivemirror.core import (
    DirectoryUnreadable,
    LocalReadFailed,
    Reconciler,
    SyncOutcome,
    SyncStage,
    guess_mime_type
)
from drivemirror.core.reconciler import BUSY_NOTICE, SUCCESS_NOTICE


class TestReconcilePass:
    """A full pass against an in-memory store."""

    @pytest.mark.asyncio
    async def test_converges_remote_folder_onto_local_files(self, reconciler, store, vault):
        write_files(vault, "a.md", "b.md", "c.md", "image.png")
        b_id = store.add_object("b.md", {FOLDER_ID}, b"old")
        store.add_object("d.md", {FOLDER_ID}, b"stale")

        result = await reconciler.sync()

        assert result.success
        assert result.outcome == SyncOutcome.SUCCESS
        assert result.notice == SUCCESS_NOTICE
        assert result.files_created == 2
        assert result.files_updated == 1
        assert result.files_deleted == 1
        assert store.names_in(FOLDER_ID) == {"a.md", "b.md", "c.md"}
        assert store.objects[b_id]["content"] == b"# b.md\n"

    @pytest.mark.asyncio
    async def test_second_pass_is_idempotent(self, reconciler, store, vault):
        write_files(vault, "a.md", "b.md")

        first = await reconciler.sync()
        ids_after_first = {obj["name"]: file_id for file_id, obj in store.objects.items()}

        second = await reconciler.sync()
        ids_after_second = {obj["name"]: file_id for file_id, obj in store.objects.items()}

        assert first.files_created == 2
        assert second.success
        assert second.files_created == 0
        assert second.files_updated == 2
        assert second.files_deleted == 0
        assert ids_after_first == ids_after_second

    @pytest.mark.asyncio
    async def test_empty_directory_deletes_everything_in_folder(self, reconciler, store):
        store.add_object("x.md", {FOLDER_ID})
        store.add_object("elsewhere.md", {"other_folder"})

        result = await reconciler.sync()

        assert result.success
        assert result.files_deleted == 1
        assert store.names_in(FOLDER_ID) == set()
        assert store.names_in("other_folder") == {"elsewhere.md"}

    @pytest.mark.asyncio
    async def test_enumerations_use_configured_folder_and_extension(self, reconciler, store, vault):
        write_files(vault, "note.md", "draft.MD")

        await reconciler.sync()

        assert store.calls_for("list_folder") == [("list_folder", FOLDER_ID)]
        assert [call[1] for call in store.calls_for("create")] == ["note.md"]

    @pytest.mark.asyncio
    async def test_uploads_markdown_as_text_markdown(self, reconciler, store, vault):
        write_files(vault, "note.md")

        await reconciler.sync()

        assert store.calls_for("create") == [("create", "note.md", FOLDER_ID, "text/markdown")]

    @pytest.mark.asyncio
    async def test_lookup_is_scoped_to_target_folder(self, reconciler, store, vault):
        write_files(vault, "a.md")
        other_id = store.add_object("a.md", {"other_folder"})

        result = await reconciler.sync()

        assert result.files_created == 1
        assert store.calls_for("find_by_name") == [("find_by_name", "a.md", FOLDER_ID)]
        assert store.objects[other_id]["parents"] == {"other_folder"}

    @pytest.mark.asyncio
    async def test_global_lookup_adds_target_folder_as_parent(self, mirror_config, authorizer, store, vault):
        write_files(vault, "a.md")
        other_id = store.add_object("a.md", {"other_folder"})
        config = mirror_config.model_copy(update={"folder_scoped_lookup": False})
        reconciler = Reconciler(config, authorizer=authorizer, store_factory=lambda client, cfg: store)

        result = await reconciler.sync()

        assert result.files_updated == 1
        assert store.calls_for("find_by_name") == [("find_by_name", "a.md", None)]
        assert store.objects[other_id]["parents"] == {"other_folder", FOLDER_ID}

    @pytest.mark.asyncio
    async def test_config_provider_is_called_once_per_pass(self, mirror_config, authorizer, store):
        provider = Mock(return_value=mirror_config)
        reconciler = Reconciler(provider, authorizer=authorizer, store_factory=lambda client, cfg: store)

        await reconciler.sync()
        await reconciler.sync()

        assert provider.call_count == 2
        authorizer.authorize.assert_awaited_with(mirror_config.credentials)


class TestMutualExclusion:
    """Only one pass runs at a time."""

    @pytest.mark.asyncio
    async def test_concurrent_call_is_rejected_without_remote_calls(self, mirror_config, authorizer, vault):
        write_files(vault, "a.md")
        listing_started = asyncio.Event()
        release_listing = asyncio.Event()

        class BlockingStore(InMemoryStore):
            async def list_folder(self, folder_id):
                listing_started.set()
                await release_listing.wait()
                return await super().list_folder(folder_id)

        store = BlockingStore()
        notices = []
        reconciler = Reconciler(
            mirror_config,
            authorizer=authorizer,
            store_factory=lambda client, cfg: store,
            notifier=notices.append
        )

        first = asyncio.create_task(reconciler.sync())
        await listing_started.wait()
        calls_before = list(store.calls)

        assert reconciler.is_busy
        second = await reconciler.sync()

        assert second.outcome == SyncOutcome.BUSY
        assert second.notice == BUSY_NOTICE
        assert store.calls == calls_before
        assert authorizer.authorize.await_count == 1

        release_listing.set()
        first_result = await first

        assert first_result.success
        assert not reconciler.is_busy
        assert notices == [BUSY_NOTICE, SUCCESS_NOTICE]

    @pytest.mark.asyncio
    async def test_busy_result_does_not_replace_last_result(self, reconciler):
        await reconciler.sync()
        completed = reconciler.last_result

        reconciler._lock.acquire()
        try:
            busy = await reconciler.sync()
        finally:
            reconciler._lock.release()

        assert busy.outcome == SyncOutcome.BUSY
        assert reconciler.last_result is completed

    @pytest.mark.asyncio
    async def test_status_listener_sees_busy_then_idle(self, reconciler):
        states = []
        reconciler.add_status_listener(states.append)

        await reconciler.sync()

        assert states == [True, False]


class TestFailures:
    """Every stage failure ends the pass and is reported."""

    @pytest.mark.asyncio
    async def test_auth_failure(self, reconciler, authorizer, store):
        authorizer.authorize.side_effect = AuthFailed("rejected")

        result = await reconciler.sync()

        assert result.outcome == SyncOutcome.AUTH_FAILED
        assert result.error.stage == SyncStage.AUTH
        assert isinstance(result.error.cause, AuthFailed)
        assert result.notice == "Sync failed during authorization, check the log for details."
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_unreadable_configuration_is_an_auth_failure(self, authorizer, store):
        provider = Mock(side_effect=ConfigurationError("no credentials"))
        reconciler = Reconciler(provider, authorizer=authorizer, store_factory=lambda client, cfg: store)

        result = await reconciler.sync()

        assert result.outcome == SyncOutcome.AUTH_FAILED
        authorizer.authorize.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_directory_is_an_enumeration_failure(self, mirror_config, authorizer, store, tmp_path):
        config = mirror_config.model_copy(update={"local_directory": tmp_path / "missing"})
        store.add_object("keep.md", {FOLDER_ID})
        reconciler = Reconciler(config, authorizer=authorizer, store_factory=lambda client, cfg: store)

        result = await reconciler.sync()

        assert result.outcome == SyncOutcome.ENUMERATION_FAILED
        assert isinstance(result.error.cause, DirectoryUnreadable)
        # The remote listing was still joined, nothing was written
        assert store.calls_for("list_folder") == [("list_folder", FOLDER_ID)]
        assert store.calls_for("delete") == []
        assert store.names_in(FOLDER_ID) == {"keep.md"}

    @pytest.mark.asyncio
    async def test_remote_listing_failure(self, reconciler, store, vault):
        write_files(vault, "a.md")
        store.failures[("list_folder", FOLDER_ID)] = RemoteListFailed(FOLDER_ID, OSError("network down"))

        result = await reconciler.sync()

        assert result.outcome == SyncOutcome.ENUMERATION_FAILED
        assert isinstance(result.error.cause, RemoteListFailed)
        assert store.calls_for("find_by_name") == []

    @pytest.mark.asyncio
    async def test_upsert_failure_aborts_remaining_upserts_and_deletes(self, reconciler, store, vault):
        write_files(vault, "A.md", "B.md", "C.md")
        store.add_object("D.md", {FOLDER_ID})
        store.failures[("create", "B.md")] = RemoteWriteFailed("B.md", OSError("quota"))

        result = await reconciler.sync()

        assert result.outcome == SyncOutcome.UPSERT_FAILED
        assert result.failed_name == "B.md"
        assert result.error.stage == SyncStage.UPSERT
        assert result.files_created == 1
        assert result.files_skipped == 1
        assert [call[1] for call in store.calls_for("find_by_name")] == ["A.md", "B.md"]
        assert store.calls_for("delete") == []
        assert store.names_in(FOLDER_ID) == {"A.md", "D.md"}

    @pytest.mark.asyncio
    async def test_local_read_failure_is_reported_as_upsert_failure(self, reconciler, vault):
        write_files(vault, "a.md")
        reconciler.enumerator.read_bytes = Mock(side_effect=LocalReadFailed("a.md", PermissionError("denied")))

        result = await reconciler.sync()

        assert result.outcome == SyncOutcome.UPSERT_FAILED
        assert result.failed_name == "a.md"
        assert isinstance(result.error.cause, LocalReadFailed)

    @pytest.mark.asyncio
    async def test_delete_failure_aborts_remaining_deletes(self, reconciler, store):
        store.add_object("x.md", {FOLDER_ID})
        store.add_object("y.md", {FOLDER_ID})
        store.failures[("delete", "x.md")] = RemoteDeleteFailed("id_1", OSError("forbidden"), name="x.md")

        result = await reconciler.sync()

        assert result.outcome == SyncOutcome.DELETE_FAILED
        assert result.failed_name == "x.md"
        assert [call[1] for call in store.calls_for("delete")] == ["x.md"]
        assert store.names_in(FOLDER_ID) == {"x.md", "y.md"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failure", ["auth", "enumeration", "upsert", "delete"])
    async def test_lock_released_after_failure(self, failure, reconciler, authorizer, store, vault):
        write_files(vault, "a.md")
        store.add_object("z.md", {FOLDER_ID})

        if failure == "auth":
            authorizer.authorize.side_effect = AuthFailed("rejected")
        elif failure == "enumeration":
            store.failures[("list_folder", FOLDER_ID)] = RemoteListFailed(FOLDER_ID, OSError("down"))
        elif failure == "upsert":
            store.failures[("create", "a.md")] = RemoteWriteFailed("a.md", OSError("down"))
        else:
            store.failures[("delete", "z.md")] = RemoteDeleteFailed("id_1", OSError("down"), name="z.md")

        failed = await reconciler.sync()
        assert not failed.success
        assert not reconciler.is_busy

        retried = await reconciler.sync()
        assert retried.outcome != SyncOutcome.BUSY

    @pytest.mark.asyncio
    async def test_failing_notifier_does_not_hide_result(self, mirror_config, authorizer, store):
        reconciler = Reconciler(
            mirror_config,
            authorizer=authorizer,
            store_factory=lambda client, cfg: store,
            notifier=Mock(side_effect=RuntimeError("ui gone"))
        )

        result = await reconciler.sync()

        assert result.success
        assert not reconciler.is_busy


class TestParallelUpserts:
    """Bounded concurrency during the upsert phase."""

    @pytest.mark.asyncio
    async def test_in_flight_upserts_never_exceed_limit(self, mirror_config, authorizer, vault):
        names = [f"note{i}.md" for i in range(6)]
        write_files(vault, *names)
        in_flight = 0
        peak = 0

        class SlowStore(InMemoryStore):
            async def create(self, name, folder_id, content, mime_type):
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0.02)
                in_flight -= 1
                return await super().create(name, folder_id, content, mime_type)

        store = SlowStore()
        config = mirror_config.model_copy(update={"max_concurrent_uploads": 2})
        reconciler = Reconciler(config, authorizer=authorizer, store_factory=lambda client, cfg: store)

        result = await reconciler.sync()

        assert result.success
        assert result.files_created == 6
        assert 1 <= peak <= 2

    @pytest.mark.asyncio
    async def test_first_failure_stops_new_upserts(self, mirror_config, authorizer, vault):
        write_files(vault, "a.md", "b.md", "c.md", "d.md", "e.md")
        store = InMemoryStore()
        store.add_object("stale.md", {FOLDER_ID})
        store.failures[("create", "b.md")] = RemoteWriteFailed("b.md", OSError("quota"))
        config = mirror_config.model_copy(update={"max_concurrent_uploads": 2})
        reconciler = Reconciler(config, authorizer=authorizer, store_factory=lambda client, cfg: store)

        result = await reconciler.sync()

        assert result.outcome == SyncOutcome.UPSERT_FAILED
        assert result.failed_name == "b.md"
        assert result.files_created + result.files_skipped == 4
        assert store.calls_for("delete") == []


def test_guess_mime_type():
    assert guess_mime_type("note.md") == "text/markdown"
    assert guess_mime_type("data.json") == "application/json"
    assert guess_mime_type("blob.unknownext") == "application/octet-stream"
