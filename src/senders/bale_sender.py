# src/senders/bale_sender.py

import asyncio
from typing import Optional

import aiohttp

from src.core_logic.errors import PublishError
from src.core_logic.internal_message import Destination, MediaCategory, PublishResult, RelayedFile

BALE_BASE_URL = "https://tapi.bale.ai/"

UPLOAD_METHODS = {
    MediaCategory.PHOTO: "sendPhoto",
    MediaCategory.VIDEO: "sendVideo",
    MediaCategory.AUDIO: "sendAudio",
    MediaCategory.DOCUMENT: "sendDocument",
}


class BaleSender:
    """
    Publishes to a Bale channel through its bot API. Text goes out as JSON,
    files as multi-part uploads read from the relay's scratch file. Anything
    other than a 2xx status counts as a failed delivery.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        bot_token: str,
        chat_id: int,
        base_url: str = BALE_BASE_URL,
        timeout_secs: float = 90.0,
    ):
        self.session = session
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.base_url = base_url if base_url.endswith('/') else base_url + '/'
        self.timeout = aiohttp.ClientTimeout(total=timeout_secs)

    def _url(self, method: str) -> str:
        return f"{self.base_url}bot{self.bot_token}/{method}"

    async def _post(self, method: str, **kwargs) -> str:
        try:
            async with self.session.post(self._url(method), timeout=self.timeout, **kwargs) as response:
                body = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise PublishError(f"transport error: {e!r}") from e

        print(f"[BALE_SENDER] {method} -> HTTP {response.status}: {body[:300]}")
        if not 200 <= response.status < 300:
            raise PublishError(f"HTTP {response.status}: {body[:300]}")
        return body

    async def _publish(self, method: str, **kwargs) -> PublishResult:
        try:
            await self._post(method, **kwargs)
        except PublishError as e:
            return PublishResult(Destination.BALE, False, str(e))
        return PublishResult(Destination.BALE, True, f"{method} ok")

    async def send_text(self, text: str) -> PublishResult:
        payload = {"chat_id": self.chat_id, "text": text}
        return await self._publish("sendMessage", json=payload)

    async def _upload(self, category: MediaCategory, relayed: RelayedFile, caption: Optional[str]) -> PublishResult:
        method = UPLOAD_METHODS[category]
        try:
            data = relayed.local_path.read_bytes()
        except OSError as e:
            return PublishResult(Destination.BALE, False, f"could not read {relayed.local_path}: {e}")

        form = aiohttp.FormData()
        form.add_field(category.value, data, filename=relayed.suggested_name,
                       content_type="application/octet-stream")
        form.add_field("chat_id", str(self.chat_id))
        if caption:
            form.add_field("caption", caption)
        return await self._publish(method, data=form)

    async def send_photo(self, relayed: RelayedFile, caption: Optional[str] = None) -> PublishResult:
        return await self._upload(MediaCategory.PHOTO, relayed, caption)

    async def send_video(self, relayed: RelayedFile, caption: Optional[str] = None) -> PublishResult:
        return await self._upload(MediaCategory.VIDEO, relayed, caption)

    async def send_audio(self, relayed: RelayedFile, caption: Optional[str] = None) -> PublishResult:
        return await self._upload(MediaCategory.AUDIO, relayed, caption)

    async def send_document(self, relayed: RelayedFile, caption: Optional[str] = None) -> PublishResult:
        return await self._upload(MediaCategory.DOCUMENT, relayed, caption)

    async def send_file(self, relayed: RelayedFile, caption: Optional[str] = None) -> PublishResult:
        """Picks the upload endpoint that matches the file's category."""
        senders = {
            MediaCategory.PHOTO: self.send_photo,
            MediaCategory.VIDEO: self.send_video,
            MediaCategory.AUDIO: self.send_audio,
            MediaCategory.DOCUMENT: self.send_document,
        }
        return await senders[relayed.category](relayed, caption)
