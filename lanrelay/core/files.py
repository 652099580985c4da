from __future__ import annotations

import mimetypes
from dataclasses import dataclass, field
from pathlib import Path

from .proto import DEFAULT_MIME, b64decode, b64encode


@dataclass(frozen=True, slots=True)
class FilePayload:
    """One uploaded file. Bytes are opaque to the relay."""

    name: str
    mime_type: str
    data: bytes = field(repr=False)

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @classmethod
    def from_base64(cls, name: str, mime_type: str, data_b64: str) -> "FilePayload":
        return cls(name=name, mime_type=mime_type or DEFAULT_MIME, data=b64decode(data_b64))

    @classmethod
    def from_path(cls, path: Path) -> "FilePayload":
        mime, _ = mimetypes.guess_type(path.name)
        return cls(name=path.name, mime_type=mime or DEFAULT_MIME, data=path.read_bytes())

    def encode_for_transfer(self) -> str:
        return b64encode(self.data)

    def to_entry(self) -> dict:
        """Wire form used in a SUBMIT ``files`` list."""
        return {"name": self.name, "mimeType": self.mime_type, "data": self.encode_for_transfer()}


def save_unique(dest_dir: Path, name: str, data: bytes) -> Path:
    """Write ``data`` under ``dest_dir`` without clobbering an existing file.

    Only the final path component of ``name`` is used; ``report.pdf`` becomes
    ``report (1).pdf`` when the first is taken.
    """

    dest_dir.mkdir(parents=True, exist_ok=True)
    base = Path(name).name or "download.bin"
    stem, suffix = Path(base).stem, Path(base).suffix
    dest = dest_dir / base
    n = 1
    while dest.exists():
        dest = dest_dir / f"{stem} ({n}){suffix}"
        n += 1
    dest.write_bytes(data)
    return dest


__all__ = ["FilePayload", "save_unique"]
