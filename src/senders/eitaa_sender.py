# src/senders/eitaa_sender.py

import asyncio
import json
from typing import Optional

import aiohttp

from src.core_logic.errors import PublishError
from src.core_logic.internal_message import Destination, PublishResult, RelayedFile

EITAA_BASE_URL = "https://eitaayar.ir/api/"


def format_channel_identifier(identifier: str) -> str:
    """Numeric channel ids are used as-is, aliases lose their leading '@'."""
    identifier = identifier.strip()
    try:
        int(identifier)
        return identifier
    except ValueError:
        return identifier.lstrip('@')


class EitaaSender:
    """
    Publishes to an Eitaa channel through the eitaayar API. Every call is a
    multi-part form posted to {base_url}{api_token}/{method}; the JSON reply
    carries an 'ok' flag.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        api_token: str,
        channel_identifier: str,
        base_url: str = EITAA_BASE_URL,
        timeout_secs: float = 90.0,
    ):
        self.session = session
        self.api_token = api_token
        self.chat_id = format_channel_identifier(channel_identifier)
        self.base_url = base_url if base_url.endswith('/') else base_url + '/'
        self.timeout = aiohttp.ClientTimeout(total=timeout_secs)

    def _url(self, method: str) -> str:
        return f"{self.base_url}{self.api_token}/{method}"

    async def _post(self, method: str, form: aiohttp.FormData) -> dict:
        try:
            async with self.session.post(self._url(method), data=form, timeout=self.timeout) as response:
                body = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise PublishError(f"transport error: {e!r}") from e

        print(f"[EITAA_SENDER] {method} -> HTTP {response.status}: {body[:300]}")
        try:
            payload = json.loads(body)
        except ValueError:
            raise PublishError(f"transport error: HTTP {response.status} with non-JSON body")

        if not isinstance(payload, dict) or payload.get("ok") is not True:
            raise PublishError(f"rejected: {body[:300]}")
        return payload

    async def _publish(self, method: str, form: aiohttp.FormData) -> PublishResult:
        try:
            await self._post(method, form)
        except PublishError as e:
            return PublishResult(Destination.EITAA, False, str(e))
        return PublishResult(Destination.EITAA, True, f"{method} ok")

    async def send_text(self, text: str) -> PublishResult:
        form = aiohttp.FormData(default_to_multipart=True)
        form.add_field("chat_id", self.chat_id)
        form.add_field("text", text)
        return await self._publish("sendMessage", form)

    async def send_file(self, relayed: RelayedFile, caption: Optional[str] = None) -> PublishResult:
        form = aiohttp.FormData()
        form.add_field("chat_id", self.chat_id)
        form.add_field("file", relayed.data, filename=relayed.suggested_name,
                       content_type="application/octet-stream")
        if caption:
            form.add_field("caption", caption)
        return await self._publish("sendFile", form)
