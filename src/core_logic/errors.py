# src/core_logic/errors.py


class RelayBotError(Exception):
    """Base class for every per-message error the dispatcher knows how to recover from."""


class AuthorizationError(RelayBotError):
    """The sender is not on the admin allow-list."""

    def __init__(self, sender_id: int):
        super().__init__(f"user {sender_id} is not an admin")
        self.sender_id = sender_id


class RelayError(RelayBotError):
    """A file could not be downloaded from Telegram."""


class PublishError(RelayBotError):
    """One destination refused the message or could not be reached."""


class UnsupportedKindError(RelayBotError):
    """The inbound message has no relayable content; handled by the placeholder path."""
