"""
ticket_manager.storage

Filesystem storage for attachment bytes.

Responsibilities:
- Write each payload to its own file under the uploads root (unique prefix plus the
  normalized file name).
- Delete stored files idempotently (absence is not an error).
- Read stored bytes back for downloads.
"""

from __future__ import annotations

from pathlib import Path
from uuid import uuid4

from ticket_manager.errors import InvalidArgument


class AttachmentStorage:
    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, file_name: str) -> Path:
        # Only the final path component is kept so a name cannot escape the root.
        name = Path(file_name.strip()).name.lower()
        if name in ("", ".", ".."):
            raise InvalidArgument(f"Invalid attachment file name: {file_name!r}")
        # A fresh prefix per call: uploads sharing a name never overwrite each other.
        return self._root / f"{uuid4().hex}_{name}"

    def write(self, file_name: str, content: bytes) -> str:
        path = self.path_for(file_name)
        self._root.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return str(path)

    def delete(self, location: str) -> None:
        Path(location).unlink(missing_ok=True)

    def exists(self, location: str) -> bool:
        return Path(location).is_file()

    def read(self, location: str) -> bytes:
        return Path(location).read_bytes()
