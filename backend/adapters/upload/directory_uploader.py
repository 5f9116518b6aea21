"""
Local directory uploader.

Writes each segment to <directory>/<name>. Used by the CLI and for local
runs without an upload service.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from adapters.upload.base import SegmentUploader


class DirectorySegmentUploader(SegmentUploader):
    """Segments land as plain files; an existing file of the same name is replaced."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self.written: list[Path] = []

    async def upload_segment(self, name: str, data: bytes) -> None:
        if Path(name).name != name:
            raise ValueError(f"segment name must not contain a path: {name!r}")
        path = self.directory / name
        await asyncio.to_thread(self._write, path, data)
        self.written.append(path)

    def _write(self, path: Path, data: bytes) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        # A half-written segment never carries the final name
        tmp = path.with_name(path.name + ".part")
        tmp.write_bytes(data)
        tmp.replace(path)
