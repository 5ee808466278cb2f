"""Reconciliation engine: converge a Drive folder onto a local directory."""

import asyncio
import mimetypes
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union

from .diff import SyncPlan, compute_plan
from .enumerator import LocalEnumerator
from ..api_clients import GoogleDriveStore, RemoteStore
from ..auth import AuthorizedClient, ServiceAccountAuthorizer
from ..config.schema import MirrorConfig
from ..utils.logging import get_logger

SUCCESS_NOTICE = "Sync completed successfully!"
BUSY_NOTICE = "A sync is already in progress. Please wait for it to complete."
FAILURE_NOTICE = "Sync failed during {stage}, check the log for details."

DEFAULT_MIME_TYPE = "application/octet-stream"
_EXTRA_MIME_TYPES = {
    "md": "text/markdown",
    "markdown": "text/markdown",
}


class SyncOutcome(str, Enum):
    """Terminal outcome of a ``sync()`` call."""
    SUCCESS = "success"
    BUSY = "busy"
    AUTH_FAILED = "auth_failed"
    ENUMERATION_FAILED = "enumeration_failed"
    UPSERT_FAILED = "upsert_failed"
    DELETE_FAILED = "delete_failed"


class SyncStage(str, Enum):
    """Stages of a reconciliation pass that can fail."""
    AUTH = "authorization"
    ENUMERATION = "enumeration"
    UPSERT = "upsert"
    DELETE = "delete"


_STAGE_OUTCOMES = {
    SyncStage.AUTH: SyncOutcome.AUTH_FAILED,
    SyncStage.ENUMERATION: SyncOutcome.ENUMERATION_FAILED,
    SyncStage.UPSERT: SyncOutcome.UPSERT_FAILED,
    SyncStage.DELETE: SyncOutcome.DELETE_FAILED,
}


class SyncFailed(Exception):
    """A stage of the pass failed; the rest of the pass was abandoned."""

    def __init__(self, stage: SyncStage, cause: BaseException, name: Optional[str] = None):
        target = f" for {name!r}" if name else ""
        super().__init__(f"{stage.value} failed{target}: {cause}")
        self.stage = stage
        self.cause = cause
        self.name = name

    @property
    def outcome(self) -> SyncOutcome:
        return _STAGE_OUTCOMES[self.stage]


@dataclass
class SyncResult:
    """Result of a sync call."""

    outcome: SyncOutcome
    notice: str
    failed_name: Optional[str] = None
    error: Optional[SyncFailed] = None
    files_created: int = 0
    files_updated: int = 0
    files_deleted: int = 0
    files_skipped: int = 0
    started_at: Optional[datetime] = None
    sync_duration: Optional[float] = None

    @property
    def success(self) -> bool:
        return self.outcome == SyncOutcome.SUCCESS

    @property
    def files_changed(self) -> int:
        """Total remote objects created, updated or deleted."""
        return self.files_created + self.files_updated + self.files_deleted

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "success": self.success,
            "notice": self.notice,
            "failed_stage": self.error.stage.value if self.error else None,
            "failed_name": self.failed_name,
            "error": str(self.error.cause) if self.error else None,
            "files_created": self.files_created,
            "files_updated": self.files_updated,
            "files_deleted": self.files_deleted,
            "files_skipped": self.files_skipped,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "sync_duration": self.sync_duration,
        }


StoreFactory = Callable[[AuthorizedClient, MirrorConfig], RemoteStore]
ConfigSource = Union[MirrorConfig, Callable[[], MirrorConfig]]


def google_drive_store_factory(client: AuthorizedClient, config: MirrorConfig) -> RemoteStore:
    return GoogleDriveStore.from_authorized_client(
        client,
        request_timeout=config.request_timeout_seconds
    )


def guess_mime_type(file_name: str) -> str:
    """MIME type to upload ``file_name`` with."""
    _, _, suffix = file_name.rpartition(".")
    if suffix in _EXTRA_MIME_TYPES:
        return _EXTRA_MIME_TYPES[suffix]
    mime_type, _ = mimetypes.guess_type(file_name)
    return mime_type or DEFAULT_MIME_TYPE


class Reconciler:
    """Mirrors a local directory onto a remote folder, one pass at a time.

    A pass authorizes, enumerates both sides concurrently, computes the
    SyncPlan, upserts every local file and finally deletes remote objects
    with no local counterpart. The first failure ends the pass. Calls made
    while a pass is running return a BUSY result without touching anything.
    """

    def __init__(
        self,
        config: ConfigSource,
        authorizer: Optional[ServiceAccountAuthorizer] = None,
        enumerator: Optional[LocalEnumerator] = None,
        store_factory: Optional[StoreFactory] = None,
        notifier: Optional[Callable[[str], None]] = None
    ):
        """Initialize the reconciler.

        Args:
            config: Configuration, or a callable returning it; called once per pass
            authorizer: Exchanges credentials for an authorized client
            enumerator: Lists and reads local files
            store_factory: Builds the remote store from an authorized client
            notifier: Receives the human readable notice of every call
        """
        self._config_source = config
        self.authorizer = authorizer or ServiceAccountAuthorizer()
        self.enumerator = enumerator or LocalEnumerator()
        self.store_factory = store_factory or google_drive_store_factory
        self.notifier = notifier
        self.logger = get_logger(self.__class__.__name__)

        self._lock = threading.Lock()
        self._status_listeners: List[Callable[[bool], None]] = []
        self.last_result: Optional[SyncResult] = None

    @property
    def is_busy(self) -> bool:
        """True while a pass is running."""
        return self._lock.locked()

    def add_status_listener(self, listener: Callable[[bool], None]):
        """Register ``listener(busy)``, called when a pass starts and ends."""
        self._status_listeners.append(listener)

    def remove_status_listener(self, listener: Callable[[bool], None]):
        self._status_listeners.remove(listener)

    async def sync(self) -> SyncResult:
        """Run one reconciliation pass and report its outcome."""
        if not self._lock.acquire(blocking=False):
            self.logger.warning("Sync requested while another is in progress")
            result = SyncResult(outcome=SyncOutcome.BUSY, notice=BUSY_NOTICE)
            self._notify(result)
            return result

        try:
            self._emit_status(True)
            result = await self._run_pass()
            self.last_result = result
        finally:
            self._lock.release()
            self._emit_status(False)

        self._notify(result)
        return result

    async def _run_pass(self) -> SyncResult:
        start = time.monotonic()
        result = SyncResult(
            outcome=SyncOutcome.SUCCESS,
            notice=SUCCESS_NOTICE,
            started_at=datetime.now(timezone.utc)
        )

        self.logger.info("Starting sync")

        try:
            config, store = await self._authorize()
            local, remote = await self._enumerate(config, store)

            plan = compute_plan(local, remote)
            self.logger.info(
                "Computed sync plan",
                to_upsert=len(plan.to_upsert),
                to_delete=len(plan.to_delete)
            )

            await self._apply_upserts(config, store, plan, result)
            await self._apply_deletes(store, plan, result)

        except SyncFailed as e:
            result.outcome = e.outcome
            result.notice = FAILURE_NOTICE.format(stage=e.stage.value)
            result.failed_name = e.name
            result.error = e
            self.logger.error(
                "Sync failed",
                stage=e.stage.value,
                file_name=e.name,
                error=str(e.cause),
                error_type=type(e.cause).__name__
            )

        result.sync_duration = time.monotonic() - start

        self.logger.info(
            "Sync finished",
            outcome=result.outcome.value,
            files_created=result.files_created,
            files_updated=result.files_updated,
            files_deleted=result.files_deleted,
            files_skipped=result.files_skipped,
            duration=f"{result.sync_duration:.2f}s"
        )
        return result

    async def _authorize(self) -> Tuple[MirrorConfig, RemoteStore]:
        """Snapshot the configuration and build an authorized store."""
        try:
            config = self._snapshot_config()
            client = await self.authorizer.authorize(config.credentials)
            store = self.store_factory(client, config)
        except Exception as e:
            raise SyncFailed(SyncStage.AUTH, e)
        return config, store

    async def _enumerate(self, config: MirrorConfig, store: RemoteStore) -> Tuple[Set[str], Dict[str, str]]:
        """List local files and the remote folder concurrently, joining both."""
        loop = asyncio.get_running_loop()
        local_listing = loop.run_in_executor(
            None,
            self.enumerator.list_files,
            config.local_directory,
            config.file_extension
        )

        local, remote = await asyncio.gather(
            local_listing,
            store.list_folder(config.target_folder_id),
            return_exceptions=True
        )

        for listing in (local, remote):
            if isinstance(listing, Exception):
                raise SyncFailed(SyncStage.ENUMERATION, listing)
            if isinstance(listing, BaseException):
                raise listing

        return local, remote

    async def _apply_upserts(
        self,
        config: MirrorConfig,
        store: RemoteStore,
        plan: SyncPlan,
        result: SyncResult
    ):
        """Upsert every planned name, stop issuing new ones after the first failure."""
        semaphore = asyncio.Semaphore(config.max_concurrent_uploads)
        abort = asyncio.Event()
        failures: List[SyncFailed] = []

        async def upsert(name: str):
            async with semaphore:
                if abort.is_set():
                    result.files_skipped += 1
                    return

                try:
                    created = await self._upsert_file(config, store, name)
                except Exception as e:
                    abort.set()
                    failures.append(SyncFailed(SyncStage.UPSERT, e, name=name))
                    return

                if created:
                    result.files_created += 1
                else:
                    result.files_updated += 1

        await asyncio.gather(*(upsert(name) for name in plan.upsert_order))

        if failures:
            if result.files_skipped:
                self.logger.warning("Upserts abandoned after failure", abandoned=result.files_skipped)
            raise failures[0]

    async def _upsert_file(self, config: MirrorConfig, store: RemoteStore, name: str) -> bool:
        """Create or update one remote object; True if it was created."""
        folder_id = config.target_folder_id
        lookup_folder = folder_id if config.folder_scoped_lookup else None

        file_id = await store.find_by_name(name, lookup_folder)

        loop = asyncio.get_running_loop()
        content = await loop.run_in_executor(
            None,
            self.enumerator.read_bytes,
            config.local_directory,
            name
        )
        mime_type = config.mime_type or guess_mime_type(name)

        if file_id is None:
            await store.create(name, folder_id, content, mime_type)
            return True

        await store.update(file_id, content, mime_type, add_parent=folder_id, name=name)
        return False

    async def _apply_deletes(self, store: RemoteStore, plan: SyncPlan, result: SyncResult):
        for name, file_id in plan.delete_order:
            try:
                await store.delete(file_id, name=name)
            except Exception as e:
                raise SyncFailed(SyncStage.DELETE, e, name=name)
            result.files_deleted += 1

    def _snapshot_config(self) -> MirrorConfig:
        if isinstance(self._config_source, MirrorConfig):
            return self._config_source
        return self._config_source()

    def _emit_status(self, busy: bool):
        for listener in list(self._status_listeners):
            try:
                listener(busy)
            except Exception:
                self.logger.exception("Status listener failed", busy=busy)

    def _notify(self, result: SyncResult):
        if self.notifier is None:
            return
        try:
            self.notifier(result.notice)
        except Exception:
            self.logger.exception("Notifier failed", outcome=result.outcome.value)
