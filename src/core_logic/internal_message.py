# src/core_logic/internal_message.py

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional


class MessageKind(str, Enum):
    TEXT = "text"
    PHOTO = "photo"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    ALBUM = "album"
    UNSUPPORTED = "unsupported"


class MediaCategory(str, Enum):
    PHOTO = "photo"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"


class Destination(str, Enum):
    EITAA = "eitaa"
    BALE = "bale"


FILE_KINDS = {
    MessageKind.PHOTO: MediaCategory.PHOTO,
    MessageKind.VIDEO: MediaCategory.VIDEO,
    MessageKind.AUDIO: MediaCategory.AUDIO,
    MessageKind.DOCUMENT: MediaCategory.DOCUMENT,
}


@dataclass(frozen=True)
class InboundMessage:
    """
    A standardized, internal representation of a message received from Telegram.
    The dispatcher should only ever interact with this object.
    """
    sender_id: int
    chat_id: int
    kind: MessageKind
    text: Optional[str] = None
    file_handle: Any = None  # handed back to the Telegram client to download the media
    file_id: Optional[str] = None
    file_name: Optional[str] = None
    caption: Optional[str] = None
    group_id: Optional[str] = None  # only set for album members

    @property
    def category(self) -> Optional[MediaCategory]:
        return FILE_KINDS.get(self.kind)


@dataclass(frozen=True)
class RelayedFile:
    """A downloaded Telegram file, alive only for the duration of one dispatch."""
    data: bytes
    local_path: Path
    suggested_name: str
    category: MediaCategory


@dataclass(frozen=True)
class PublishResult:
    destination: Destination
    ok: bool
    detail: str
