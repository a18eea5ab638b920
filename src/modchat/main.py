"""
Modchat Server
==============

Entry point: loads the environment and YAML configuration, wires the store,
credential table, moderation bot and WebSocket server together, and runs
until interrupted. Pending state is flushed to the persistence backend on
shutdown.
"""

import asyncio
import os
import signal
import sys
from pathlib import Path

from aiohttp import web
from dotenv import load_dotenv

from modchat.auth.credentials import CredentialAuthority
from modchat.bot.ai_provider import create_provider
from modchat.bot.moderation_bot import ModerationBot
from modchat.configuration.app_configuration import AppConfig, resolve_config_path
from modchat.errors import CredentialConfigurationError, PersistenceConfigurationError
from modchat.persistence.factory import create_backend
from modchat.server.app import ChatServer
from modchat.server.connection_registry import ConnectionRegistry
from modchat.server.protocol_handler import ChatLimits, SessionProtocolHandler
from modchat.store.moderation_store import ModerationStore
from modchat.util.logger import get_logger, handle_exception


logger = get_logger("main")


def resolve_base_dir() -> Path:
    """Determine the base directory of the project.

    Resolution order:
    1. MODCHAT_HOME environment variable, if set.
    2. If running in a frozen/compiled context (e.g., PyInstaller, Nuitka), use the executable's directory.
    3. Otherwise, assume running from source and use the directory above ``src``.
    """
    if env_home := os.getenv("MODCHAT_HOME"):
        return Path(env_home).resolve()

    if getattr(sys, "frozen", False) or getattr(sys, "compiled", False):
        return Path(sys.argv[0]).resolve().parent

    return Path(__file__).resolve().parents[2]


def build_server(config: AppConfig) -> ChatServer:
    """Construct every component from ``config``.

    Raises
    ------
    PersistenceConfigurationError
        The persistence backend cannot be built (e.g. ``GITHUB_TOKEN`` missing).
    CredentialConfigurationError
        The credential table is empty or malformed.
    """
    backend = create_backend(config.persistence)
    credentials = CredentialAuthority.from_config(config.credentials)

    store = ModerationStore(
        backend,
        save_delay=config.save_debounce,
        typing_stale_ms=config.typing_stale_ms,
    )

    ai_settings = config.ai_settings
    bot = None
    if ai_settings.enabled:
        bot = ModerationBot(create_provider(ai_settings), handle=ai_settings.bot_handle)
        logger.info("Moderation bot enabled with %s provider", ai_settings.provider)

    registry = ConnectionRegistry()
    limits = ChatLimits(
        max_message_length=config.max_message_length,
        max_broadcast_length=config.max_broadcast_length,
        max_flash_seconds=config.max_flash_seconds,
    )
    handler = SessionProtocolHandler(store, registry, credentials, bot=bot, limits=limits)

    return ChatServer(
        store,
        credentials,
        registry=registry,
        handler=handler,
        bot=bot,
        heartbeat_interval=config.heartbeat_interval,
        closure_interval=config.closure_check_interval,
    )


async def run_server(server: ChatServer, host: str, port: int) -> None:
    """Serve until SIGINT/SIGTERM, then clean up (which flushes pending state)."""
    runner = web.AppRunner(server.create_app())
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("Listening on http://%s:%s", host, port)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    try:
        await stop.wait()
        logger.info("Shutdown signal received")
    finally:
        await runner.cleanup()


async def async_main() -> int:
    """Bootstrap the server, returning an exit code."""
    base_dir = resolve_base_dir()
    os.chdir(base_dir)
    load_dotenv(dotenv_path=base_dir / ".env")

    config = AppConfig(resolve_config_path())

    try:
        server = build_server(config)
    except PersistenceConfigurationError as exc:
        logger.critical("Persistence backend misconfigured: %s", exc)
        return 1
    except CredentialConfigurationError as exc:
        logger.critical("Credential table misconfigured: %s", exc)
        return 1

    await run_server(server, config.host, config.port)
    return 0


def main() -> int:
    """Entrypoint that runs the async server and returns the process code."""
    sys.excepthook = handle_exception
    logger.info("Starting Modchat server…")
    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")
        return 0
    except Exception as exc:
        logger.critical("An unexpected error occurred while running the server: %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
