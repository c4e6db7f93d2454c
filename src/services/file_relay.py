# src/services/file_relay.py
import asyncio
import os
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable

from src.core_logic.errors import RelayError
from src.core_logic.internal_message import InboundMessage, RelayedFile

# Telethon's client.download_media(handle, file=bytes) has this shape.
Downloader = Callable[..., Awaitable[Any]]

DEFAULT_EXTENSIONS = {
    "photo": ".jpg",
    "video": ".mp4",
    "audio": ".mp3",
    "document": "",
}


def ensure_files_dir(path) -> Path:
    """Recreates the scratch directory for downloaded files if it is missing."""
    files_dir = Path(path)
    files_dir.mkdir(parents=True, exist_ok=True)
    return files_dir


class FileRelay:
    """
    Pulls media out of Telegram so it can be re-uploaded elsewhere.
    Bale needs a file on disk, so every download is also written to a scratch
    file that lives exactly as long as the materialize() block.
    """

    def __init__(self, downloader: Downloader, files_dir, timeout_secs: float = 120.0):
        self._downloader = downloader
        self.files_dir = Path(files_dir)
        self.timeout_secs = timeout_secs

    async def download(self, handle: Any) -> bytes:
        if handle is None:
            raise RelayError("message has no downloadable file")
        try:
            data = await asyncio.wait_for(self._downloader(handle, file=bytes), timeout=self.timeout_secs)
        except asyncio.TimeoutError:
            raise RelayError(f"download timed out after {self.timeout_secs:.0f}s")
        except RelayError:
            raise
        except Exception as e:
            raise RelayError(f"download failed: {e}") from e

        if not data:
            raise RelayError("download returned no data")
        return bytes(data)

    def _scratch_path(self, message: InboundMessage) -> Path:
        suffix = os.path.splitext(message.file_name or "")[1]
        if not suffix:
            suffix = DEFAULT_EXTENSIONS.get(message.category.value, "")
        return self.files_dir / f"{uuid.uuid4()}{suffix}"

    @asynccontextmanager
    async def materialize(self, message: InboundMessage) -> AsyncIterator[RelayedFile]:
        """
        Downloads the file behind `message` and yields it as a RelayedFile.
        The scratch copy is removed on every exit path.
        """
        if message.category is None:
            raise RelayError(f"message kind '{message.kind.value}' carries no file")

        data = await self.download(message.file_handle)
        local_path = self._scratch_path(message)
        try:
            try:
                local_path.write_bytes(data)
            except OSError as e:
                raise RelayError(f"could not write scratch file {local_path}: {e}") from e
            print(f"[FILE_RELAY] Downloaded {len(data)} bytes for {message.kind.value} -> {local_path.name}")

            yield RelayedFile(
                data=data,
                local_path=local_path,
                suggested_name=message.file_name or local_path.name,
                category=message.category,
            )
        finally:
            try:
                local_path.unlink(missing_ok=True)
            except OSError as e:
                print(f"[FILE_RELAY] ERROR: Could not remove scratch file {local_path}: {e}")
