"""Local directory enumeration."""

from pathlib import Path
from typing import Optional, Set, Union

from ..utils.logging import get_logger


class DirectoryUnreadable(Exception):
    """Raised when the mirrored directory is missing or cannot be listed."""

    def __init__(self, path: Union[str, Path], cause: Optional[BaseException] = None):
        super().__init__(f"Cannot list directory {str(path)!r}: {cause}")
        self.path = Path(path)
        self.cause = cause


class LocalReadFailed(Exception):
    """Raised when a local file's content cannot be read."""

    def __init__(self, name: str, cause: Optional[BaseException] = None):
        super().__init__(f"Cannot read local file {name!r}: {cause}")
        self.name = name
        self.cause = cause


def matches_extension(file_name: str, extension: str) -> bool:
    """True if the text after the last ``.`` of ``file_name`` is ``extension``.

    The comparison is case-sensitive; names without a dot never match.
    """
    _, dot, suffix = file_name.rpartition(".")
    return bool(dot) and suffix == extension


class LocalEnumerator:
    """Lists the synchronizable files of a directory, non-recursively."""

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    def list_files(self, directory: Union[str, Path], extension: str) -> Set[str]:
        """Return the names of regular files in ``directory`` ending in ``.extension``.

        Raises:
            DirectoryUnreadable: If the path does not exist or is not listable
        """
        extension = extension.lstrip(".")
        names: Set[str] = set()
        skipped = 0

        try:
            for entry in Path(directory).iterdir():
                if not entry.is_file():
                    continue
                if matches_extension(entry.name, extension):
                    names.add(entry.name)
                else:
                    skipped += 1
        except OSError as e:
            self.logger.error("Error reading directory", directory=str(directory), error=str(e))
            raise DirectoryUnreadable(directory, e)

        self.logger.info(
            "Listed local directory",
            directory=str(directory),
            extension=extension,
            files=len(names),
            skipped=skipped
        )
        return names

    def read_bytes(self, directory: Union[str, Path], name: str) -> bytes:
        """Read the content of ``name`` inside ``directory``.

        Raises:
            LocalReadFailed
        """
        try:
            return (Path(directory) / name).read_bytes()
        except OSError as e:
            self.logger.error("Error reading local file", file_name=name, error=str(e))
            raise LocalReadFailed(name, e)
