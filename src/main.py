# src/main.py

import asyncio
import os
import signal
import sys
import traceback

import aiohttp
from telethon import TelegramClient

# Import configurations
from config.settings import CONFIG_FILE_PATH, DATA_DIR, ConfigError, load_config

# Import all modular components
from src.core_logic.album_buffer import AlbumBuffer
from src.core_logic.dispatcher import Dispatcher
from src.listeners.telegram_listener import on_listener_error, setup_telegram_listener
from src.senders.bale_sender import BaleSender
from src.senders.eitaa_sender import EitaaSender
from src.services.file_relay import FileRelay, ensure_files_dir

SHUTDOWN_DRAIN_SECS = 5.0


def _install_signal_handlers(stop_event: asyncio.Event):
    """SIGINT/SIGTERM set stop_event; main() then runs the shutdown sequence."""
    loop = asyncio.get_running_loop()

    def request_stop():
        print("\n[MAIN] Stop signal received.")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_stop)
        except (NotImplementedError, RuntimeError):
            # Windows event loops: fall back to KeyboardInterrupt.
            pass


async def shutdown(client, handler, dispatcher: Dispatcher, session: aiohttp.ClientSession,
                   drain_secs: float = SHUTDOWN_DRAIN_SECS):
    """
    Stops intake first and lets in-flight dispatches finish while Telegram is
    still connected, since they need it to download files and send replies.
    """
    print("[MAIN] Shutting down...")
    if handler is not None:
        client.remove_event_handler(handler)
    dispatcher.close()
    await dispatcher.drain(drain_secs)
    if client.is_connected():
        await client.disconnect()
    await session.close()
    print("[MAIN] All clients disconnected. Shutdown complete.")


async def main(config_path: str = CONFIG_FILE_PATH):
    """
    Loads the config, connects to Telegram as a bot and relays every message an
    admin sends it to Eitaa and Bale until a stop signal arrives.
    """
    print("[MAIN] Initializing application...")
    config = load_config(config_path)

    files_dir = ensure_files_dir(config.files_dir)
    os.makedirs(DATA_DIR, exist_ok=True)
    print(f"[MAIN] Scratch directory for downloads: {files_dir}")

    # --- PLATFORM CLIENTS INITIALIZATION ---
    client = TelegramClient(os.path.join(DATA_DIR, 'teleport_bot'), config.telegram_api_id, config.telegram_api_hash)
    session = aiohttp.ClientSession()

    eitaa = EitaaSender(session, config.eitaa_api_token, config.eitaa_channel_identifier,
                        timeout_secs=config.send_timeout_secs)
    bale = BaleSender(session, config.bale_bot_token, config.bale_destination_channel_id,
                      timeout_secs=config.send_timeout_secs)
    relay = FileRelay(client.download_media, files_dir, timeout_secs=config.download_timeout_secs)

    async def reply(chat_id: int, text: str):
        await client.send_message(chat_id, text)

    dispatcher = Dispatcher(config, relay, eitaa, bale, reply,
                            album_buffer=AlbumBuffer(window_secs=config.album_window_secs))

    # --- BOT LIFECYCLE MANAGEMENT ---
    stop_event = asyncio.Event()
    handler = None
    disconnected = None
    try:
        await client.start(bot_token=config.telegram_bot_token)
        handler = setup_telegram_listener(client, dispatcher)
        _install_signal_handlers(stop_event)

        me = await client.get_me()
        print(f"[MAIN] Start listening for @{me.username}")
        print("--- Bot is fully operational. Press Ctrl+C to stop. ---")

        disconnected = asyncio.ensure_future(client.run_until_disconnected())
        stopping = asyncio.create_task(stop_event.wait())
        await asyncio.wait({disconnected, stopping}, return_when=asyncio.FIRST_COMPLETED)
        stopping.cancel()

    except Exception as e:
        on_listener_error(e)
        traceback.print_exc()
    finally:
        # --- GRACEFUL SHUTDOWN ---
        await shutdown(client, handler, dispatcher, session)
        if disconnected is not None:
            await asyncio.gather(disconnected, return_exceptions=True)


def run():
    try:
        asyncio.run(main())
    except ConfigError as e:
        print(f"[MAIN] {e}")
        sys.exit(1)
    except (KeyboardInterrupt, SystemExit):
        print("\n[MAIN] Shutdown requested by user.")


if __name__ == "__main__":
    run()
