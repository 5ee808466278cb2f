"""Remote store interface and its failure modes."""

from abc import ABC, abstractmethod
from typing import Dict, Optional

from ..utils.logging import get_logger


class RemoteStoreError(Exception):
    """Base class for remote store failures."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class RemoteListFailed(RemoteStoreError):
    """Raised when listing or searching the store fails."""

    def __init__(self, target: str, cause: Optional[BaseException] = None):
        super().__init__(f"Listing failed for {target!r}: {cause}", cause)
        self.target = target


class RemoteWriteFailed(RemoteStoreError):
    """Raised when creating or updating an object fails."""

    def __init__(self, name: str, cause: Optional[BaseException] = None):
        super().__init__(f"Writing {name!r} failed: {cause}", cause)
        self.name = name


class RemoteDeleteFailed(RemoteStoreError):
    """Raised when deleting an object fails."""

    def __init__(self, file_id: str, cause: Optional[BaseException] = None, name: Optional[str] = None):
        label = f"{name!r} ({file_id})" if name else file_id
        super().__init__(f"Deleting {label} failed: {cause}", cause)
        self.file_id = file_id
        self.name = name


class RemoteStore(ABC):
    """Operations the reconciler needs from a remote object store.

    Implementations raise the ``RemoteStoreError`` subclasses documented on
    each method and never retry on their own.
    """

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    @abstractmethod
    async def list_folder(self, folder_id: str) -> Dict[str, str]:
        """Map the name of every object directly inside ``folder_id`` to its id.

        All pages are drained before returning. When the store holds several
        objects with the same name, the last one listed wins.

        Raises:
            RemoteListFailed
        """

    @abstractmethod
    async def find_by_name(self, name: str, folder_id: Optional[str] = None) -> Optional[str]:
        """Return the id of the first object named exactly ``name``.

        Args:
            name: Object name to look up
            folder_id: Restrict the lookup to this folder; whole store if None

        Raises:
            RemoteListFailed
        """

    @abstractmethod
    async def create(self, name: str, folder_id: str, content: bytes, mime_type: str) -> str:
        """Create a new object in ``folder_id`` and return its id.

        Raises:
            RemoteWriteFailed
        """

    @abstractmethod
    async def update(
        self,
        file_id: str,
        content: bytes,
        mime_type: str,
        add_parent: Optional[str] = None,
        name: Optional[str] = None
    ) -> str:
        """Replace the content of ``file_id``, keeping its id.

        ``add_parent`` is added to the object's parents; existing parents
        are kept. ``name`` is only used for error reporting.

        Raises:
            RemoteWriteFailed
        """

    @abstractmethod
    async def delete(self, file_id: str, name: Optional[str] = None) -> None:
        """Permanently delete ``file_id``.

        Raises:
            RemoteDeleteFailed
        """
