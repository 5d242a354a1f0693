from __future__ import annotations

import asyncio
import importlib
import logging
import sqlite3
from types import SimpleNamespace


def _try_import_or_skip(module_name: str, pip_name: str | None = None) -> bool:
    try:
        importlib.import_module(module_name)
        return True
    except ModuleNotFoundError:
        install_name = pip_name or module_name
        print(
            f"Smoke wiring check skipped: missing dependency '{module_name}'. "
            f"Install requirements and retry (e.g. `pip install {install_name}` "
            f"or `pip install -e .`)."
        )
        return False


class _FakeCategory:
    def __init__(self, category_id: int):
        self.id = category_id


class _FakeGuild:
    def __init__(self, guild_id: int, name: str):
        self.id = guild_id
        self.name = name
        self._next_id = 900

    async def create_category(self, name, reason=None):
        self._next_id += 1
        return _FakeCategory(self._next_id)


async def _run() -> int:
    import discord

    from assignments.coordinator import AssignmentCoordinator
    from assignments.models import AssignmentRecord
    from assignments.store import AssignmentStore
    from db.connect import SQLITE_DIALECT
    from misc.event_log import EventLog
    from misc.gateway import DiscordGateway

    logger = logging.getLogger("ticketbot.smoke")
    logger.addHandler(logging.NullHandler())
    logger.propagate = False
    event_log = EventLog(logger)

    gateway = DiscordGateway("smoke-token", event_log=event_log, intents=discord.Intents.none())
    store = AssignmentStore(sqlite3.connect(":memory:", check_same_thread=False), SQLITE_DIALECT, event_log=event_log)
    store.ensure_schema()
    coordinator = AssignmentCoordinator(store, gateway, event_log=event_log)
    coordinator.attach()

    expected_events = {"on_ready", "on_guild_join", "on_guild_available", "on_guild_remove"}
    missing = sorted(name for name in expected_events if not callable(getattr(gateway.client, name, None)))
    if missing:
        raise RuntimeError(f"Runtime events were not registered: {missing}")

    guild = _FakeGuild(123456789012345678, "Smoke Guild")
    gateway.client.get_guild = lambda guild_id: guild if guild_id == guild.id else None
    await gateway.client.on_guild_join(SimpleNamespace(id=guild.id, name=guild.name))
    await gateway.client.on_guild_available(SimpleNamespace(id=guild.id, name=guild.name))

    record = store.lookup(guild.id)
    if record != AssignmentRecord(guild.id, 901, 902):
        raise RuntimeError(f"Unexpected assignment after joined notifications: {record}")

    await coordinator.close()
    store.close()
    print("Smoke wiring check passed.")
    return 0


def _main() -> int:
    if not _try_import_or_skip("discord", "discord.py"):
        return 0
    return asyncio.run(_run())


if __name__ == "__main__":
    raise SystemExit(_main())
