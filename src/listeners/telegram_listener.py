# src/listeners/telegram_listener.py

from telethon import TelegramClient, events
from telethon.tl import types
from src.core_logic.internal_message import InboundMessage, MessageKind
from src.core_logic.dispatcher import Dispatcher


def _file_id(message):
    file = getattr(message, 'file', None)
    return getattr(file, 'id', None) if file else None


def to_inbound_message(message) -> InboundMessage:
    """
    Converts a Telethon message into our standardized InboundMessage.
    Stickers, GIFs, voice notes and round videos are Telegram documents too,
    so they have to be ruled out before the generic media checks.
    """
    text = getattr(message, 'raw_text', None) or None
    grouped_id = getattr(message, 'grouped_id', None)
    group_id = str(grouped_id) if grouped_id is not None else None

    base = dict(
        sender_id=int(message.sender_id),
        chat_id=int(message.chat_id),
        group_id=group_id,
    )

    # Telethon exposes a link preview's photo/document through .photo and .document,
    # so the preview has to be recognised before any media check.
    if isinstance(getattr(message, 'media', None), types.MessageMediaWebPage):
        if text:
            return InboundMessage(kind=MessageKind.TEXT, text=text, **base)
        return InboundMessage(kind=MessageKind.UNSUPPORTED, **base)

    file_id = _file_id(message)

    if any(getattr(message, attr, None) for attr in ('sticker', 'gif', 'voice', 'video_note')):
        return InboundMessage(kind=MessageKind.UNSUPPORTED, **base)

    media = dict(file_handle=message, file_id=file_id, caption=text)

    if getattr(message, 'photo', None):
        name = f"photo_{file_id}.jpg" if group_id and file_id else "photo.jpg"
        return InboundMessage(kind=MessageKind.PHOTO, file_name=name, **media, **base)
    if getattr(message, 'video', None):
        return InboundMessage(kind=MessageKind.VIDEO, file_name="video.mp4", **media, **base)
    if getattr(message, 'audio', None):
        return InboundMessage(kind=MessageKind.AUDIO, file_name="audio.mp3", **media, **base)
    if getattr(message, 'document', None):
        name = getattr(message.file, 'name', None) if getattr(message, 'file', None) else None
        return InboundMessage(kind=MessageKind.DOCUMENT, file_name=name or "document", **media, **base)

    if text:
        return InboundMessage(kind=MessageKind.TEXT, text=text, **base)

    return InboundMessage(kind=MessageKind.UNSUPPORTED, **base)


def on_listener_error(exception: Exception):
    """Telegram-side problems are only logged; Telethon owns reconnects."""
    print(f"[TELEGRAM_LISTENER] ERROR: {type(exception).__name__}: {exception}")


def setup_telegram_listener(client: TelegramClient, dispatcher: Dispatcher):
    """
    Sets up the event handler for the Telegram client.
    This function doesn't run the client, it just prepares it.
    """
    print("[TELEGRAM_LISTENER] Setting up event handler...")

    @client.on(events.NewMessage(incoming=True))
    async def handler(event: events.NewMessage.Event):
        message = event.message
        if not message:
            return

        try:
            inbound = to_inbound_message(message)
        except Exception as e:
            on_listener_error(e)
            return

        print(f"[TELEGRAM_LISTENER] Received {inbound.kind.value} from {inbound.sender_id} in chat {inbound.chat_id}.")
        await dispatcher.handle(inbound)

    print("[TELEGRAM_LISTENER] Event handler registered.")
    return handler
