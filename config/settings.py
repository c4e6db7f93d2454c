# config/settings.py
import os
from pathlib import Path

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

project_root = os.path.join(os.path.dirname(__file__), '..')

CONFIG_FILE_PATH = os.getenv("TELEPORT_CONFIG_PATH", os.path.join(project_root, 'config.cf'))
DEFAULT_FILES_DIR = os.path.join(project_root, 'files')
DATA_DIR = os.path.join(project_root, 'data')  # Telethon session lives here

# Maps the case-insensitive keys of the config file onto RelayConfig fields.
CONFIG_KEYS = {
    "admins": "admin_ids",
    "telegrambottoken": "telegram_bot_token",
    "telegramapiid": "telegram_api_id",
    "telegramapihash": "telegram_api_hash",
    "eitaaapitoken": "eitaa_api_token",
    "eitaachannelidentifier": "eitaa_channel_identifier",
    "balebottoken": "bale_bot_token",
    "baledestinationchannelid": "bale_destination_channel_id",
    "filesdir": "files_dir",
    "albumwindowsecs": "album_window_secs",
    "downloadtimeoutsecs": "download_timeout_secs",
    "sendtimeoutsecs": "send_timeout_secs",
}


class ConfigError(Exception):
    """Raised when the config file is missing or unusable. Fatal at startup."""


class RelayConfig(BaseModel):
    """
    Immutable settings for one run of the relay. Built once by load_config()
    and handed to every component that needs credentials or the admin list.
    """
    model_config = ConfigDict(frozen=True)

    admin_ids: frozenset[int]
    telegram_bot_token: str = Field(min_length=1)
    telegram_api_id: int
    telegram_api_hash: str = Field(min_length=1)
    eitaa_api_token: str = Field(min_length=1)
    eitaa_channel_identifier: str = Field(min_length=1)
    bale_bot_token: str = Field(min_length=1)
    bale_destination_channel_id: int
    files_dir: Path = Path(DEFAULT_FILES_DIR)
    album_window_secs: float = Field(default=1.0, gt=0)
    download_timeout_secs: float = Field(default=120.0, gt=0)
    send_timeout_secs: float = Field(default=90.0, gt=0)

    @field_validator("admin_ids", mode="before")
    @classmethod
    def _split_admins(cls, value):
        if isinstance(value, str):
            entries = [part.strip() for part in value.split(',') if part.strip()]
            try:
                value = [int(entry) for entry in entries]
            except ValueError:
                raise ValueError(f"admin ids must be integers, got '{value}'")
        if not value:
            raise ValueError("at least one admin id is required")
        return value

    def is_admin(self, user_id: int) -> bool:
        return user_id in self.admin_ids


def parse_config_values(raw: dict) -> dict:
    """
    Normalises the raw key/value pairs read from the file: keys are matched
    case-insensitively, unknown keys and lines without a value are dropped.
    """
    values = {}
    for key, value in raw.items():
        if value is None:
            continue
        field = CONFIG_KEYS.get(key.strip().lower())
        if field is None:
            continue
        values[field] = value.strip()
    return values


def load_config(path: str = CONFIG_FILE_PATH) -> RelayConfig:
    """
    Loads and validates the relay configuration file.

    Raises:
        ConfigError: if the file does not exist, a required key is missing,
            a numeric field is not numeric, or the admin list is empty.
    """
    if not os.path.exists(path):
        raise ConfigError(f"CRITICAL: Configuration file not found at '{path}'.")

    values = parse_config_values(dotenv_values(path, interpolate=False, encoding='utf-8'))

    try:
        config = RelayConfig(**values)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'config'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigError(f"CRITICAL: Invalid configuration in '{path}': {problems}") from e

    print(f"[CONFIG] Configuration loaded successfully ({len(config.admin_ids)} admin(s)).")
    return config
