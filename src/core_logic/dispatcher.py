# src/core_logic/dispatcher.py
import asyncio
import traceback
from contextlib import AsyncExitStack
from typing import Any, Awaitable, Callable, Optional

from config.settings import RelayConfig
from src.core_logic.album_buffer import AlbumBuffer
from src.core_logic.errors import AuthorizationError, RelayError, UnsupportedKindError
from src.core_logic.internal_message import Destination, InboundMessage, MessageKind, PublishResult

SUCCESS_REPLY = "Your message has been sent to Eitaa and Bale."
FAILURE_REPLY = "An error occurred while sending your message to Eitaa or Bale."
ACCESS_DENIED_REPLY = "You don't have access..."
UNSUPPORTED_PLACEHOLDER = "Unsupported message type received."

Reply = Callable[[int, str], Awaitable[Any]]


def failed_results(detail: str) -> list[PublishResult]:
    return [PublishResult(destination, False, detail) for destination in Destination]


def merge_results(destination: Destination, results: list[PublishResult]) -> PublishResult:
    """Folds several calls to one destination into a single result."""
    failures = [r.detail for r in results if not r.ok]
    if failures:
        return PublishResult(destination, False, "; ".join(failures))
    return PublishResult(destination, True, f"{len(results)} call(s) ok")


class Dispatcher:
    """
    Takes one inbound Telegram message at a time through
    authorize -> classify -> relay -> publish -> acknowledge.

    Each call to handle() is independent; the only state shared between
    concurrent calls is the immutable config and the album buffer.
    """

    def __init__(
        self,
        config: RelayConfig,
        relay,
        eitaa,
        bale,
        reply: Reply,
        album_buffer: Optional[AlbumBuffer] = None,
    ):
        self.config = config
        self.relay = relay
        self.eitaa = eitaa
        self.bale = bale
        self.reply = reply
        self.album_buffer = album_buffer or AlbumBuffer(window_secs=config.album_window_secs)
        self._inflight: set[asyncio.Task] = set()
        self._closed = False

    # --- Lifecycle ---
    def close(self):
        """Stops accepting new messages. In-flight dispatches keep running."""
        self._closed = True

    async def drain(self, timeout: float = 5.0):
        current = asyncio.current_task()
        pending = [task for task in self._inflight if task is not current]
        if not pending:
            return
        print(f"[DISPATCHER] Waiting up to {timeout:.0f}s for {len(pending)} in-flight dispatch(es)...")
        _, not_done = await asyncio.wait(pending, timeout=timeout)
        if not_done:
            print(f"[DISPATCHER] Abandoning {len(not_done)} dispatch(es) still in flight.")

    # --- Entry point ---
    async def handle(self, message: InboundMessage) -> list[PublishResult]:
        if self._closed:
            print(f"[DISPATCHER] Shutting down. Ignoring message from {message.sender_id}.")
            return []

        task = asyncio.current_task()
        if task is not None:
            self._inflight.add(task)
        try:
            return await self._dispatch(message)
        finally:
            self._inflight.discard(task)

    async def _dispatch(self, message: InboundMessage) -> list[PublishResult]:
        try:
            self._authorize(message)
        except AuthorizationError as e:
            print(f"[DISPATCHER] Access denied: {e}.")
            await self._send_reply(message.sender_id, ACCESS_DENIED_REPLY)
            return []

        print(f"[DISPATCHER] Received a {message.kind.value} message in chat {message.chat_id}.")

        try:
            results = await self._route(message)
        except Exception as e:
            print(f"[DISPATCHER] CRITICAL ERROR while relaying message from {message.sender_id}: {e}")
            traceback.print_exc()
            results = failed_results(f"internal error: {e}")

        if results is None:
            # Absorbed into an album that another dispatch will acknowledge.
            return []

        for result in results:
            status = "ok" if result.ok else "FAILED"
            print(f"[DISPATCHER] {result.destination.value}: {status} ({result.detail})")

        success = bool(results) and all(result.ok for result in results)
        await self._send_reply(message.chat_id, SUCCESS_REPLY if success else FAILURE_REPLY)
        return results

    # --- Stages ---
    def _authorize(self, message: InboundMessage):
        if not self.config.is_admin(message.sender_id):
            raise AuthorizationError(message.sender_id)

    def _classify(self, message: InboundMessage) -> MessageKind:
        kind = message.kind
        if kind == MessageKind.TEXT and not message.text:
            raise UnsupportedKindError("text message without text")
        if kind == MessageKind.PHOTO and message.group_id is not None:
            return MessageKind.ALBUM
        if kind in (MessageKind.UNSUPPORTED, MessageKind.ALBUM):
            raise UnsupportedKindError(f"cannot relay a '{kind.value}' message")
        return kind

    async def _route(self, message: InboundMessage) -> Optional[list[PublishResult]]:
        try:
            kind = self._classify(message)
        except UnsupportedKindError as e:
            print(f"[DISPATCHER] {e}. Sending placeholder instead.")
            return await self._publish_text(UNSUPPORTED_PLACEHOLDER)

        if kind == MessageKind.TEXT:
            return await self._publish_text(message.text)

        if kind == MessageKind.ALBUM:
            album = await self.album_buffer.collect(message)
            if album is None:
                return None
            if len(album) > 1:
                return await self._publish_album(album)

        return await self._publish_file(message)

    # --- Publishing ---
    async def _publish_both(self, eitaa_call: Awaitable[PublishResult], bale_call: Awaitable[PublishResult]) -> list[PublishResult]:
        """Runs one call per destination concurrently; neither can sink the other."""
        outcomes = await asyncio.gather(eitaa_call, bale_call, return_exceptions=True)
        results = []
        for destination, outcome in zip((Destination.EITAA, Destination.BALE), outcomes):
            if isinstance(outcome, PublishResult):
                results.append(outcome)
            elif isinstance(outcome, Exception):
                results.append(PublishResult(destination, False, f"unexpected error: {outcome!r}"))
            else:
                raise outcome
        return results

    async def _publish_text(self, text: str) -> list[PublishResult]:
        return await self._publish_both(self.eitaa.send_text(text), self.bale.send_text(text))

    async def _publish_file(self, message: InboundMessage) -> list[PublishResult]:
        try:
            async with self.relay.materialize(message) as relayed:
                return await self._publish_both(
                    self.eitaa.send_file(relayed, message.caption),
                    self.bale.send_file(relayed, message.caption),
                )
        except RelayError as e:
            print(f"[DISPATCHER] ERROR: Could not fetch {message.kind.value} from Telegram: {e}")
            return failed_results(f"relay failed: {e}")

    async def _publish_album(self, album: list[InboundMessage]) -> list[PublishResult]:
        caption = next((member.caption for member in album if member.caption), None) or "Album"
        file_ids = [member.file_id or "?" for member in album]
        print(f"[DISPATCHER] Relaying album {album[0].group_id} with {len(album)} photo(s).")

        per_destination = {Destination.EITAA: [], Destination.BALE: []}
        try:
            async with AsyncExitStack() as stack:
                relayed_files = [await stack.enter_async_context(self.relay.materialize(member)) for member in album]
                for relayed in relayed_files:
                    for result in await self._publish_both(self.eitaa.send_file(relayed), self.bale.send_file(relayed)):
                        per_destination[result.destination].append(result)
        except RelayError as e:
            print(f"[DISPATCHER] ERROR: Could not fetch album {album[0].group_id} from Telegram: {e}")
            return failed_results(f"relay failed: {e}")

        summary = f"Album: {caption}\n" + "\n".join(file_ids)
        for result in await self._publish_text(summary):
            per_destination[result.destination].append(result)

        return [merge_results(destination, results) for destination, results in per_destination.items()]

    async def _send_reply(self, chat_id: int, text: str):
        try:
            await self.reply(chat_id, text)
        except Exception as e:
            print(f"[DISPATCHER] ERROR: Could not send reply to chat {chat_id}: {e}")
