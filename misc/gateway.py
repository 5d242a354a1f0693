from __future__ import annotations

import asyncio
from typing import Callable, Protocol

import aiohttp
import discord

from assignments.errors import GatewayConnectionError
from assignments.errors import GatewayError
from assignments.errors import GatewaySessionError
from misc.event_log import EventLog
from misc.events_runtime import register_runtime_events
from misc.runtime_deps import GuildHandler
from misc.runtime_deps import RuntimeDeps

SessionLostCallback = Callable[[BaseException], None]


class GatewayClient(Protocol):
    def on_guild_joined(self, handler: GuildHandler) -> None: ...

    def on_guild_left(self, handler: GuildHandler) -> None: ...

    def on_session_lost(self, callback: SessionLostCallback) -> None: ...

    async def create_category(self, guild_id: int, name: str) -> int: ...

    async def delete_category(self, guild_id: int, category_id: int) -> None: ...

    async def connect(self) -> None: ...

    async def close(self) -> None: ...


def default_intents() -> discord.Intents:
    intents = discord.Intents.none()
    intents.guilds = True
    return intents


class DiscordGateway:
    """GatewayClient backed by a discord.py client.

    Guild notifications are fanned out to the registered handlers; discord.py
    runs each event in its own task, so handlers for different guilds overlap.
    """

    def __init__(
        self,
        token: str,
        *,
        event_log: EventLog | None = None,
        intents: discord.Intents | None = None,
        client: discord.Client | None = None,
    ) -> None:
        self._token = token
        self.event_log = event_log or EventLog()
        self.client = client or discord.Client(intents=intents or default_intents())
        self._joined_handlers: list[GuildHandler] = []
        self._left_handlers: list[GuildHandler] = []
        self._ready = asyncio.Event()
        self._runner: asyncio.Task | None = None
        self._lost_callbacks: list[SessionLostCallback] = []
        self._closing = False
        self._runner_reported = False

        register_runtime_events(
            self.client,
            deps=RuntimeDeps(
                event_log=self.event_log,
                dispatch_guild_joined=self._dispatch_joined,
                dispatch_guild_left=self._dispatch_left,
                mark_ready=self._ready.set,
            ),
        )

    def on_guild_joined(self, handler: GuildHandler) -> None:
        self._joined_handlers.append(handler)

    def on_guild_left(self, handler: GuildHandler) -> None:
        self._left_handlers.append(handler)

    def on_session_lost(self, callback: SessionLostCallback) -> None:
        """Called once if the session dies after it became ready."""
        self._lost_callbacks.append(callback)

    async def _dispatch_joined(self, guild_id: int, guild_name: str) -> None:
        for handler in list(self._joined_handlers):
            await handler(guild_id, guild_name)

    async def _dispatch_left(self, guild_id: int, guild_name: str) -> None:
        for handler in list(self._left_handlers):
            await handler(guild_id, guild_name)

    async def _resolve_guild(self, guild_id: int, operation: str) -> discord.Guild:
        guild = self.client.get_guild(int(guild_id))
        if guild is not None:
            return guild
        try:
            return await self.client.fetch_guild(int(guild_id))
        except discord.DiscordException as exc:
            raise GatewayError(f"could not fetch guild {guild_id}: {exc}", guild_id=guild_id, operation=operation) from exc

    async def create_category(self, guild_id: int, name: str) -> int:
        guild = await self._resolve_guild(guild_id, "create_category")
        try:
            category = await guild.create_category(name, reason="Ticket category assignment")
        except discord.DiscordException as exc:
            raise GatewayError(
                f"could not create category {name!r} in guild {guild_id}: {exc}",
                guild_id=guild_id,
                operation="create_category",
            ) from exc
        return int(category.id)

    async def delete_category(self, guild_id: int, category_id: int) -> None:
        guild = await self._resolve_guild(guild_id, "delete_category")
        channel = guild.get_channel(int(category_id))
        try:
            if channel is None:
                channel = await self.client.fetch_channel(int(category_id))
            await channel.delete(reason="Orphaned ticket category")
        except discord.NotFound:
            return
        except discord.DiscordException as exc:
            raise GatewayError(
                f"could not delete category {category_id} in guild {guild_id}: {exc}",
                guild_id=guild_id,
                operation="delete_category",
            ) from exc

    async def connect(self) -> None:
        try:
            await self.client.login(self._token)
        except discord.DiscordException as exc:
            raise GatewaySessionError(f"login failed: {exc}", operation="login") from exc
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
            raise GatewayConnectionError(f"could not reach Discord: {exc}", operation="login") from exc

        self._runner = asyncio.create_task(self.client.connect(reconnect=True))
        self._runner.add_done_callback(self._on_runner_done)
        ready = asyncio.create_task(self._ready.wait())
        done, _pending = await asyncio.wait({self._runner, ready}, return_when=asyncio.FIRST_COMPLETED)
        if ready not in done:
            ready.cancel()
            # The caller reports the raised error.
            self._runner_reported = True
            exc = self._runner.exception()
            if exc is None:
                raise GatewayConnectionError("gateway closed before the session became ready", operation="connect")
            raise GatewayConnectionError(f"gateway connection failed: {exc}", operation="connect") from exc

    def _on_runner_done(self, task: asyncio.Task) -> None:
        # Failures before ready are raised from connect(); a requested close is not a loss.
        if task.cancelled() or self._closing or not self._ready.is_set():
            return
        exc = task.exception()
        if exc is None:
            exc = GatewayConnectionError("gateway session ended unexpectedly", operation="connect")
        self._runner_reported = True
        self.event_log.gateway_connection_error(exc)
        for callback in list(self._lost_callbacks):
            callback(exc)

    async def close(self) -> None:
        self._closing = True
        await self.client.close()
        runner, self._runner = self._runner, None
        if runner is None:
            return
        await asyncio.wait({runner})
        if runner.cancelled() or self._runner_reported:
            return
        exc = runner.exception()
        if exc is not None:
            self._runner_reported = True
            self.event_log.gateway_connection_error(exc)
