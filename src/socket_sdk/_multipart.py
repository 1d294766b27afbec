"""multipart/form-data bodies streamed from disk."""
from __future__ import annotations

import asyncio
import json
import os
import secrets
from collections.abc import AsyncIterator, Callable, Iterable
from dataclasses import dataclass
from pathlib import PurePath
from typing import Any

from socket_sdk.constants import UPLOAD_CHUNK_SIZE
from socket_sdk.errors import MultipartError, UploadError

CRLF = b"\r\n"

MAX_BOUNDARY_ATTEMPTS = 10


def default_boundary() -> str:
    return f"socket-sdk-{secrets.token_hex(16)}"


def _quote(value: str) -> str:
    # Same escaping browsers apply to form-data names
    return value.replace("\r", "%0D").replace("\n", "%0A").replace('"', "%22")


@dataclass(frozen=True)
class MultipartPart:
    """One form-data part.  Exactly one of ``content`` and ``path`` is set."""

    name: str
    filename: str | None = None
    content_type: str = "application/octet-stream"
    content: bytes | None = None
    path: str | None = None

    def __post_init__(self) -> None:
        if (self.content is None) == (self.path is None):
            raise ValueError("MultipartPart needs exactly one of 'content' or 'path'")

    def header_bytes(self) -> bytes:
        disposition = f'Content-Disposition: form-data; name="{_quote(self.name)}"'
        if self.filename is not None:
            disposition += f'; filename="{_quote(self.filename)}"'
        return (
            f"{disposition}\r\nContent-Type: {self.content_type}\r\n\r\n".encode("utf-8")
        )


@dataclass(frozen=True)
class _PreparedPart:
    part: MultipartPart
    header: bytes
    size: int


@dataclass(frozen=True)
class MultipartBody:
    """An assembled upload body.

    :meth:`stream` can be called once per request attempt; every call reads
    the files from disk again.
    """

    boundary: str
    parts: tuple[_PreparedPart, ...]

    @property
    def content_type(self) -> str:
        return f"multipart/form-data; boundary={self.boundary}"

    @property
    def content_length(self) -> int:
        delimiter = len(b"--" + self.boundary.encode("ascii") + CRLF)
        total = sum(delimiter + len(p.header) + p.size + len(CRLF) for p in self.parts)
        return total + len(self._closing())

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Content-Type": self.content_type,
            "Content-Length": str(self.content_length),
        }

    @property
    def names(self) -> list[str]:
        return [p.part.name for p in self.parts]

    def _closing(self) -> bytes:
        return b"--" + self.boundary.encode("ascii") + b"--" + CRLF

    async def stream(self) -> AsyncIterator[bytes]:
        delimiter = b"--" + self.boundary.encode("ascii") + CRLF
        for prepared in self.parts:
            yield delimiter + prepared.header
            if prepared.part.content is not None:
                yield prepared.part.content
            else:
                async for chunk in _read_file(prepared.part.path or "", prepared.size):
                    yield chunk
            yield CRLF
        yield self._closing()


async def _read_file(path: str, size: int) -> AsyncIterator[bytes]:
    """Read exactly *size* bytes of *path* in chunks, off the event loop."""
    try:
        fh = await asyncio.to_thread(open, path, "rb")
    except OSError as exc:
        raise MultipartError(
            f"Failed to read file during upload: {path}\n"
            "-> Ensure files remain accessible during the upload process.",
            cause=exc,
        ) from exc
    try:
        remaining = size
        while remaining > 0:
            chunk = await asyncio.to_thread(fh.read, min(UPLOAD_CHUNK_SIZE, remaining))
            if not chunk:
                raise MultipartError(f"File shrank during upload: {path}")
            remaining -= len(chunk)
            yield chunk
    finally:
        fh.close()


def _open_error(path: str, exc: OSError) -> UploadError:
    message = f"Failed to read file: {path}"
    if isinstance(exc, FileNotFoundError):
        message += "\n-> File does not exist. Check the file path and try again."
    elif isinstance(exc, PermissionError):
        message += f'\n-> Permission denied. Run: chmod +r "{path}"'
    elif isinstance(exc, IsADirectoryError):
        message += "\n-> Expected a file but found a directory."
    elif exc.errno is not None:
        message += f"\n-> Error code: {exc.errno}"
    return UploadError(message, path=path, cause=exc)


def _file_contains(path: str, needle: bytes) -> bool:
    overlap = len(needle) - 1
    tail = b""
    with open(path, "rb") as fh:
        while True:
            chunk = fh.read(UPLOAD_CHUNK_SIZE)
            if not chunk:
                return False
            window = tail + chunk
            if needle in window:
                return True
            tail = window[-overlap:] if overlap else b""


class MultipartBuilder:
    """Collects parts in insertion order and assembles a :class:`MultipartBody`."""

    def __init__(self, boundary_factory: Callable[[], str] | None = None) -> None:
        self._parts: list[MultipartPart] = []
        self._boundary_factory = boundary_factory or default_boundary

    @property
    def parts(self) -> tuple[MultipartPart, ...]:
        return tuple(self._parts)

    def add_part(self, part: MultipartPart) -> MultipartBuilder:
        self._parts.append(part)
        return self

    def add_file(
        self,
        name: str,
        path: str | os.PathLike[str],
        *,
        filename: str | None = None,
        content_type: str = "application/octet-stream",
    ) -> MultipartBuilder:
        path = os.fspath(path)
        return self.add_part(
            MultipartPart(
                name=name,
                filename=filename if filename is not None else os.path.basename(path),
                content_type=content_type,
                path=path,
            )
        )

    def add_bytes(
        self,
        name: str,
        content: bytes,
        *,
        filename: str | None = None,
        content_type: str = "application/octet-stream",
    ) -> MultipartBuilder:
        return self.add_part(
            MultipartPart(name=name, filename=filename, content_type=content_type, content=content)
        )

    def add_json(self, data: Any, basename: str = "data.json") -> MultipartBuilder:
        return self.add_part(json_part(data, basename))

    def build(self) -> MultipartBody:
        """Validate every file and pick a boundary absent from all parts.

        Raises :class:`UploadError` for a missing or unreadable file before
        anything is sent.  Performs blocking file I/O.
        """
        prepared: list[_PreparedPart] = []
        for part in self._parts:
            if part.path is not None:
                try:
                    with open(part.path, "rb") as fh:
                        size = os.fstat(fh.fileno()).st_size
                except OSError as exc:
                    raise _open_error(part.path, exc) from exc
            else:
                size = len(part.content or b"")
            prepared.append(_PreparedPart(part=part, header=part.header_bytes(), size=size))

        boundary = self._choose_boundary(prepared)
        return MultipartBody(boundary=boundary, parts=tuple(prepared))

    def _choose_boundary(self, prepared: list[_PreparedPart]) -> str:
        for _ in range(MAX_BOUNDARY_ATTEMPTS):
            boundary = self._boundary_factory()
            needle = boundary.encode("ascii")
            if not any(self._collides(p, needle) for p in prepared):
                return boundary
        raise MultipartError(
            f"Could not find a multipart boundary absent from the payload "
            f"after {MAX_BOUNDARY_ATTEMPTS} attempts"
        )

    @staticmethod
    def _collides(prepared: _PreparedPart, needle: bytes) -> bool:
        if needle in prepared.header:
            return True
        if prepared.part.content is not None:
            return needle in prepared.part.content
        try:
            return _file_contains(prepared.part.path or "", needle)
        except OSError as exc:
            raise _open_error(prepared.part.path or "", exc) from exc


def json_part(data: Any, basename: str = "data.json") -> MultipartPart:
    """Serialize *data* as a JSON side-channel part.

    The part name is *basename* without its extension.
    """
    name = PurePath(basename).stem
    return MultipartPart(
        name=name,
        filename=basename,
        content_type="application/json",
        content=json.dumps(data).encode("utf-8"),
    )


def parts_for_filepaths(
    filepaths: Iterable[str | os.PathLike[str]],
    base_path: str | os.PathLike[str] = ".",
) -> list[MultipartPart]:
    """One part per file, named by its POSIX path relative to *base_path*."""
    base = os.path.abspath(os.fspath(base_path))
    parts: list[MultipartPart] = []
    for filepath in filepaths:
        abs_path = os.path.abspath(os.path.join(base, os.fspath(filepath)))
        rel_path = PurePath(os.path.relpath(abs_path, base)).as_posix()
        parts.append(
            MultipartPart(
                name=rel_path,
                filename=os.path.basename(abs_path),
                path=abs_path,
            )
        )
    return parts
