from __future__ import annotations

import asyncio
import logging
import os
import signal

import discord

from assignments.coordinator import AssignmentCoordinator
from assignments.errors import ConfigError
from assignments.errors import GatewayError
from assignments.errors import GatewaySessionError
from assignments.errors import StoreError
from assignments.store import AssignmentStore
from config.defaults import SQL_CONFIG_PATH
from config.defaults import TOKEN_PATH
from config.loader import load_assignment_settings
from config.loader import load_database_config
from config.loader import read_token
from misc.event_log import EventLog
from misc.event_log import configure_logging
from misc.gateway import DiscordGateway

# =========================
# ENV
# =========================
CONFIG_PATH = os.getenv("TICKETBOT_SQL_CONFIG", SQL_CONFIG_PATH)
TOKEN_FILE = os.getenv("TICKETBOT_TOKEN_FILE", TOKEN_PATH)


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, stop: asyncio.Event) -> None:
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no add_signal_handler.
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop.set))


def open_store(event_log: EventLog, config_path: str = CONFIG_PATH) -> AssignmentStore | None:
    try:
        db_config = load_database_config(config_path)
    except ConfigError as exc:
        event_log.config_error(exc)
        return None

    try:
        store = AssignmentStore.open(db_config, event_log=event_log)
    except StoreError as exc:
        event_log.store_error(exc, operation="connect")
        return None

    try:
        store.ensure_schema()
    except StoreError as exc:
        event_log.store_error(exc, operation="ensure_schema")
        store.close()
        return None
    return store


async def run(
    *,
    config_path: str = CONFIG_PATH,
    token_path: str = TOKEN_FILE,
    event_log: EventLog | None = None,
    stop: asyncio.Event | None = None,
    gateway_factory=DiscordGateway,
) -> int:
    log = event_log or EventLog()

    store = open_store(log, config_path)
    if store is None:
        return 1

    try:
        settings = load_assignment_settings(config_path)
        token = read_token(token_path)
    except ConfigError as exc:
        log.config_error(exc)
        store.close()
        return 1

    gateway = gateway_factory(token, event_log=log)
    coordinator = AssignmentCoordinator(
        store,
        gateway,
        event_log=log,
        open_category_name=settings.open_category_name,
        closed_category_name=settings.closed_category_name,
        left_policy=settings.left_policy,
        compensate_orphans=settings.compensate_orphans,
    )
    coordinator.attach()

    if stop is None:
        stop = asyncio.Event()
        _install_signal_handlers(asyncio.get_running_loop(), stop)
    session_lost: list[BaseException] = []

    def _on_session_lost(exc: BaseException) -> None:
        # Already logged by the gateway.
        session_lost.append(exc)
        stop.set()

    gateway.on_session_lost(_on_session_lost)

    try:
        await gateway.connect()
    except GatewaySessionError as exc:
        log.gateway_session_error(exc)
        await gateway.close()
        store.close()
        return 1
    except GatewayError as exc:
        log.gateway_connection_error(exc)
        await gateway.close()
        store.close()
        return 1

    # Run until interrupted or the session is lost.
    log.started()
    await stop.wait()

    # Stop accepting notifications, let in-flight ones finish, then tear down.
    log.stopping()
    await coordinator.close()
    await gateway.close()
    store.close()
    return 1 if session_lost else 0


def main() -> int:
    configure_logging()
    # discord.py only installs its own log handler from Client.run.
    discord.utils.setup_logging(level=logging.INFO)
    return asyncio.run(run())


if __name__ == "__main__":
    raise SystemExit(main())
