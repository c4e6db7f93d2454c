import asyncio
import unittest
from contextlib import asynccontextmanager
from pathlib import Path

from config.settings import RelayConfig
from src.core_logic.album_buffer import AlbumBuffer
from src.core_logic.dispatcher import (
    ACCESS_DENIED_REPLY,
    FAILURE_REPLY,
    SUCCESS_REPLY,
    UNSUPPORTED_PLACEHOLDER,
    Dispatcher,
)
from src.core_logic.errors import RelayError
from src.core_logic.internal_message import (
    Destination,
    InboundMessage,
    MessageKind,
    PublishResult,
    RelayedFile,
)

ADMIN = 42


def make_config(**overrides) -> RelayConfig:
    values = dict(
        admin_ids="42, 7",
        telegram_bot_token="tg-token",
        telegram_api_id=1234,
        telegram_api_hash="hash",
        eitaa_api_token="eitaa-token",
        eitaa_channel_identifier="@channel",
        bale_bot_token="bale-token",
        bale_destination_channel_id=5555,
        album_window_secs=0.05,
    )
    values.update(overrides)
    return RelayConfig(**values)


class FakeRelay:
    def __init__(self, fail_with=None):
        self.fail_with = fail_with
        self.materialized = []
        self.released = []

    @asynccontextmanager
    async def materialize(self, message):
        self.materialized.append(message)
        if self.fail_with is not None:
            raise self.fail_with
        relayed = RelayedFile(
            data=b"bytes-" + (message.file_id or "x").encode(),
            local_path=Path(f"/tmp/{message.file_id}"),
            suggested_name=message.file_name,
            category=message.category,
        )
        try:
            yield relayed
        finally:
            self.released.append(relayed)


class FakeSender:
    def __init__(self, destination, ok=True, raises=None):
        self.destination = destination
        self.ok = ok
        self.raises = raises
        self.texts = []
        self.files = []

    def _result(self, detail):
        if self.raises is not None:
            raise self.raises
        return PublishResult(self.destination, self.ok, detail)

    async def send_text(self, text):
        self.texts.append(text)
        return self._result("text")

    async def send_file(self, relayed, caption=None):
        self.files.append((relayed, caption))
        return self._result("file")


class DispatcherTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.config = make_config()
        self.relay = FakeRelay()
        self.eitaa = FakeSender(Destination.EITAA)
        self.bale = FakeSender(Destination.BALE)
        self.replies = []

    async def reply(self, chat_id, text):
        self.replies.append((chat_id, text))

    def make_dispatcher(self):
        return Dispatcher(self.config, self.relay, self.eitaa, self.bale, self.reply)


class TestAuthorization(DispatcherTestCase):
    async def test_non_admin_is_denied_without_publishing(self) -> None:
        dispatcher = self.make_dispatcher()
        message = InboundMessage(sender_id=999, chat_id=999, kind=MessageKind.TEXT, text="hi")

        results = await dispatcher.handle(message)

        self.assertEqual(results, [])
        self.assertEqual(self.replies, [(999, ACCESS_DENIED_REPLY)])
        self.assertEqual(self.eitaa.texts, [])
        self.assertEqual(self.bale.texts, [])

    async def test_every_configured_admin_is_accepted(self) -> None:
        dispatcher = self.make_dispatcher()

        await dispatcher.handle(InboundMessage(sender_id=7, chat_id=7, kind=MessageKind.TEXT, text="from 7"))

        self.assertEqual(self.eitaa.texts, ["from 7"])
        self.assertEqual(self.replies, [(7, SUCCESS_REPLY)])

    async def test_non_admin_file_is_never_downloaded(self) -> None:
        dispatcher = self.make_dispatcher()
        message = InboundMessage(sender_id=999, chat_id=999, kind=MessageKind.PHOTO,
                                 file_handle=object(), file_id="p1", file_name="photo.jpg")

        await dispatcher.handle(message)

        self.assertEqual(self.relay.materialized, [])
        self.assertEqual(self.replies, [(999, ACCESS_DENIED_REPLY)])


class TestTextAndUnsupported(DispatcherTestCase):
    async def test_text_goes_to_both_destinations(self) -> None:
        dispatcher = self.make_dispatcher()
        message = InboundMessage(sender_id=ADMIN, chat_id=100, kind=MessageKind.TEXT, text="hello")

        results = await dispatcher.handle(message)

        self.assertEqual(self.eitaa.texts, ["hello"])
        self.assertEqual(self.bale.texts, ["hello"])
        self.assertTrue(all(r.ok for r in results))
        self.assertEqual(self.replies, [(100, SUCCESS_REPLY)])

    async def test_unsupported_kind_sends_placeholder(self) -> None:
        dispatcher = self.make_dispatcher()
        message = InboundMessage(sender_id=ADMIN, chat_id=100, kind=MessageKind.UNSUPPORTED)

        await dispatcher.handle(message)

        self.assertEqual(self.eitaa.texts, [UNSUPPORTED_PLACEHOLDER])
        self.assertEqual(self.bale.texts, [UNSUPPORTED_PLACEHOLDER])
        self.assertEqual(self.relay.materialized, [])
        self.assertEqual(self.replies, [(100, SUCCESS_REPLY)])


class TestFiles(DispatcherTestCase):
    def photo(self, caption="trip", **kwargs):
        return InboundMessage(sender_id=ADMIN, chat_id=100, kind=MessageKind.PHOTO,
                              file_handle=object(), file_id="p1", file_name="photo.jpg",
                              caption=caption, **kwargs)

    async def test_photo_with_caption_reaches_both(self) -> None:
        dispatcher = self.make_dispatcher()

        results = await dispatcher.handle(self.photo())

        self.assertEqual(len(self.relay.materialized), 1)
        (eitaa_file, eitaa_caption), = self.eitaa.files
        (bale_file, bale_caption), = self.bale.files
        self.assertIs(eitaa_file, bale_file)
        self.assertEqual(eitaa_caption, "trip")
        self.assertEqual(bale_caption, "trip")
        self.assertEqual(eitaa_file.category.value, "photo")
        self.assertEqual(len(self.relay.released), 1)
        self.assertEqual({r.destination for r in results}, {Destination.EITAA, Destination.BALE})
        self.assertEqual(self.replies, [(100, SUCCESS_REPLY)])

    async def test_relay_failure_skips_publishing(self) -> None:
        self.relay = FakeRelay(fail_with=RelayError("download timed out after 120s"))
        dispatcher = self.make_dispatcher()
        document = InboundMessage(sender_id=ADMIN, chat_id=100, kind=MessageKind.DOCUMENT,
                                  file_handle=object(), file_id="d1", file_name="report.pdf")

        results = await dispatcher.handle(document)

        self.assertEqual(self.eitaa.files, [])
        self.assertEqual(self.bale.files, [])
        self.assertEqual(len(results), 2)
        self.assertFalse(any(r.ok for r in results))
        self.assertIn("timed out", results[0].detail)
        self.assertEqual(self.replies, [(100, FAILURE_REPLY)])

    async def test_one_destination_failing_does_not_stop_the_other(self) -> None:
        self.eitaa = FakeSender(Destination.EITAA, ok=False)
        dispatcher = self.make_dispatcher()

        results = await dispatcher.handle(self.photo())

        self.assertEqual(len(self.eitaa.files), 1)
        self.assertEqual(len(self.bale.files), 1)
        by_destination = {r.destination: r for r in results}
        self.assertFalse(by_destination[Destination.EITAA].ok)
        self.assertTrue(by_destination[Destination.BALE].ok)
        self.assertEqual(self.replies, [(100, FAILURE_REPLY)])

    async def test_publisher_exception_is_contained(self) -> None:
        self.bale = FakeSender(Destination.BALE, raises=RuntimeError("boom"))
        dispatcher = self.make_dispatcher()

        results = await dispatcher.handle(self.photo())

        self.assertEqual(len(self.eitaa.files), 1)
        by_destination = {r.destination: r for r in results}
        self.assertTrue(by_destination[Destination.EITAA].ok)
        self.assertFalse(by_destination[Destination.BALE].ok)
        self.assertIn("boom", by_destination[Destination.BALE].detail)
        self.assertEqual(len(self.relay.released), 1)
        self.assertEqual(self.replies, [(100, FAILURE_REPLY)])

    async def test_failing_reply_is_not_raised(self) -> None:
        async def broken_reply(chat_id, text):
            raise ConnectionError("telegram is down")

        dispatcher = Dispatcher(self.config, self.relay, self.eitaa, self.bale, broken_reply)
        message = InboundMessage(sender_id=ADMIN, chat_id=100, kind=MessageKind.TEXT, text="hello")

        results = await dispatcher.handle(message)

        self.assertTrue(all(r.ok for r in results))


class TestAlbums(DispatcherTestCase):
    def member(self, file_id, caption=None, group_id="g1"):
        return InboundMessage(sender_id=ADMIN, chat_id=100, kind=MessageKind.PHOTO,
                              file_handle=object(), file_id=file_id,
                              file_name=f"photo_{file_id}.jpg", caption=caption, group_id=group_id)

    async def test_album_members_are_relayed_together(self) -> None:
        dispatcher = self.make_dispatcher()
        members = [self.member("p1", caption="trip"), self.member("p2"), self.member("p3")]

        await asyncio.gather(*(dispatcher.handle(m) for m in members))

        self.assertEqual([m.file_id for m in self.relay.materialized], ["p1", "p2", "p3"])
        self.assertEqual(len(self.eitaa.files), 3)
        self.assertEqual(len(self.bale.files), 3)
        self.assertEqual(self.eitaa.texts, ["Album: trip\np1\np2\np3"])
        self.assertEqual(self.bale.texts, ["Album: trip\np1\np2\np3"])
        self.assertEqual(len(self.relay.released), 3)
        self.assertEqual(self.replies, [(100, SUCCESS_REPLY)])

    async def test_album_without_caption_uses_default_title(self) -> None:
        dispatcher = self.make_dispatcher()

        await asyncio.gather(dispatcher.handle(self.member("p1")), dispatcher.handle(self.member("p2")))

        self.assertEqual(self.eitaa.texts, ["Album: Album\np1\np2"])

    async def test_late_member_is_relayed_on_its_own(self) -> None:
        dispatcher = self.make_dispatcher()
        await asyncio.gather(dispatcher.handle(self.member("p1")), dispatcher.handle(self.member("p2")))

        await dispatcher.handle(self.member("p3", caption="late"))

        self.assertEqual(len(self.eitaa.files), 3)
        self.assertEqual(self.eitaa.files[-1][1], "late")
        self.assertEqual(len(self.eitaa.texts), 1)
        self.assertEqual(len(self.replies), 2)

    async def test_album_relay_failure_publishes_nothing(self) -> None:
        self.relay = FakeRelay(fail_with=RelayError("bad handle"))
        dispatcher = self.make_dispatcher()

        await asyncio.gather(dispatcher.handle(self.member("p1")), dispatcher.handle(self.member("p2")))

        self.assertEqual(self.eitaa.files, [])
        self.assertEqual(self.eitaa.texts, [])
        self.assertEqual(self.bale.texts, [])
        self.assertEqual(self.replies, [(100, FAILURE_REPLY)])

    async def test_album_uses_injected_buffer(self) -> None:
        buffer = AlbumBuffer(window_secs=0.01)
        dispatcher = Dispatcher(self.config, self.relay, self.eitaa, self.bale, self.reply, album_buffer=buffer)

        await dispatcher.handle(self.member("p1"))

        self.assertEqual(buffer.open_groups, 0)
        self.assertEqual(len(self.eitaa.files), 1)


class TestLifecycle(DispatcherTestCase):
    async def test_closed_dispatcher_ignores_new_messages(self) -> None:
        dispatcher = self.make_dispatcher()
        dispatcher.close()

        results = await dispatcher.handle(InboundMessage(sender_id=ADMIN, chat_id=100, kind=MessageKind.TEXT, text="x"))

        self.assertEqual(results, [])
        self.assertEqual(self.replies, [])
        self.assertEqual(self.eitaa.texts, [])

    async def test_drain_waits_for_inflight_dispatch(self) -> None:
        dispatcher = self.make_dispatcher()
        task = asyncio.create_task(dispatcher.handle(
            InboundMessage(sender_id=ADMIN, chat_id=100, kind=MessageKind.PHOTO, file_handle=object(),
                           file_id="p1", file_name="photo_p1.jpg", group_id="g9")))
        await asyncio.sleep(0)

        dispatcher.close()
        await dispatcher.drain(timeout=2.0)

        self.assertTrue(task.done())
        self.assertEqual(self.replies, [(100, SUCCESS_REPLY)])


if __name__ == "__main__":
    unittest.main()
