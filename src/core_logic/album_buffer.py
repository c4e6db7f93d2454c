# src/core_logic/album_buffer.py
import asyncio
from collections import OrderedDict
from typing import Optional

from src.core_logic.internal_message import InboundMessage

MAX_ALBUM_MEMBERS = 10  # Telegram never groups more than ten items


class AlbumBuffer:
    """
    Groups album members pushed by the listener, keyed by group_id.

    The first member of a group opens a collection window; members that show up
    while it is open are absorbed into it. Once the window has passed the group
    is closed and anything arriving later for the same id goes out on its own.
    """

    def __init__(self, window_secs: float = 1.0, max_groups: int = 64, max_members: int = MAX_ALBUM_MEMBERS):
        self.window_secs = window_secs
        self.max_groups = max_groups
        self.max_members = max_members
        self._open: dict[str, list[InboundMessage]] = {}
        self._closed: OrderedDict[str, None] = OrderedDict()

    @property
    def open_groups(self) -> int:
        return len(self._open)

    def _remember_closed(self, group_id: str):
        self._closed[group_id] = None
        while len(self._closed) > self.max_groups:
            self._closed.popitem(last=False)

    async def collect(self, message: InboundMessage) -> Optional[list[InboundMessage]]:
        """
        Returns the full album for the member that opened the group, None for
        members absorbed into an open group, and [message] for members that
        could not be grouped.
        """
        group_id = message.group_id
        if group_id is None:
            return [message]

        members = self._open.get(group_id)
        if members is not None:
            if len(members) < self.max_members:
                members.append(message)
                return None
            print(f"[ALBUM_BUFFER] Album {group_id} is full. Relaying extra item on its own.")
            return [message]

        if group_id in self._closed:
            print(f"[ALBUM_BUFFER] Late member for closed album {group_id}. Relaying it on its own.")
            return [message]

        if len(self._open) >= self.max_groups:
            print(f"[ALBUM_BUFFER] Too many open albums. Relaying {group_id} item on its own.")
            return [message]

        self._open[group_id] = [message]
        try:
            await asyncio.sleep(self.window_secs)
        finally:
            members = self._open.pop(group_id)
            self._remember_closed(group_id)

        print(f"[ALBUM_BUFFER] Album {group_id} closed with {len(members)} item(s).")
        return members
