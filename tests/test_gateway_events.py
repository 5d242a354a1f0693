from __future__ import annotations

import asyncio
import logging
import unittest
from types import SimpleNamespace
from unittest import mock

try:
    import aiohttp
    import discord

    from misc.gateway import DiscordGateway
    from misc.gateway import default_intents
except ModuleNotFoundError:
    discord = None
    DiscordGateway = None

from assignments.errors import GatewayConnectionError
from assignments.errors import GatewayError
from assignments.errors import GatewaySessionError
from misc.event_log import EventLog


class _FakeCategory:
    def __init__(self, category_id: int):
        self.id = category_id
        self.deleted = False

    async def delete(self, reason=None):
        self.deleted = True


class _FakeGuild:
    def __init__(self, guild_id: int, *, fail: BaseException | None = None):
        self.id = guild_id
        self.name = f"guild-{guild_id}"
        self.fail = fail
        self.created: list[str] = []
        self.channels: dict[int, _FakeCategory] = {}

    async def create_category(self, name, reason=None):
        if self.fail is not None:
            raise self.fail
        self.created.append(name)
        category = _FakeCategory(500 + len(self.created))
        self.channels[category.id] = category
        return category

    def get_channel(self, channel_id: int):
        return self.channels.get(channel_id)


class _RecordingHandler(logging.Handler):
    def __init__(self):
        super().__init__(level=1)
        self.records: list[logging.LogRecord] = []

    def emit(self, record):
        self.records.append(record)

    def messages(self) -> list[str]:
        return [r.getMessage() for r in self.records]


def _event_log(handler: logging.Handler | None = None) -> EventLog:
    logger = logging.getLogger("ticketbot.tests.gateway")
    logger.setLevel(1)
    logger.handlers = [handler or logging.NullHandler()]
    logger.propagate = False
    return EventLog(logger)


@unittest.skipIf(DiscordGateway is None, "discord.py not installed")
class DiscordGatewayTests(unittest.IsolatedAsyncioTestCase):
    def _gateway(self) -> DiscordGateway:
        return DiscordGateway("token", event_log=_event_log(), intents=discord.Intents.none())

    def test_default_intents_only_request_guilds(self):
        intents = default_intents()
        self.assertTrue(intents.guilds)
        self.assertFalse(intents.messages)
        self.assertFalse(intents.members)

    def test_runtime_events_are_registered(self):
        gateway = self._gateway()
        for name in ("on_ready", "on_guild_join", "on_guild_available", "on_guild_remove"):
            self.assertTrue(callable(getattr(gateway.client, name, None)), name)

    async def test_join_and_available_dispatch_to_joined_handlers(self):
        gateway = self._gateway()
        seen: list[tuple[int, str]] = []

        async def handler(guild_id, guild_name):
            seen.append((guild_id, guild_name))

        gateway.on_guild_joined(handler)
        await gateway.client.on_guild_join(SimpleNamespace(id=42, name="Racing League"))
        await gateway.client.on_guild_available(SimpleNamespace(id=43, name=None))

        self.assertEqual(seen, [(42, "Racing League"), (43, "43")])

    async def test_remove_dispatches_to_left_handlers(self):
        gateway = self._gateway()
        seen: list[int] = []

        async def handler(guild_id, guild_name):
            seen.append(guild_id)

        gateway.on_guild_left(handler)
        await gateway.client.on_guild_remove(SimpleNamespace(id=42, name="Racing League"))
        self.assertEqual(seen, [42])

    async def test_create_category_returns_new_id(self):
        gateway = self._gateway()
        guild = _FakeGuild(42)
        with mock.patch.object(gateway.client, "get_guild", return_value=guild):
            category_id = await gateway.create_category(42, "Open Tickets")
        self.assertEqual(category_id, 501)
        self.assertEqual(guild.created, ["Open Tickets"])

    async def test_create_category_maps_discord_errors(self):
        gateway = self._gateway()
        guild = _FakeGuild(42, fail=discord.ClientException("Missing Permissions"))
        with mock.patch.object(gateway.client, "get_guild", return_value=guild):
            with self.assertRaises(GatewayError) as ctx:
                await gateway.create_category(42, "Open Tickets")
        self.assertEqual(ctx.exception.guild_id, 42)
        self.assertEqual(ctx.exception.operation, "create_category")

    async def test_delete_category_uses_cached_channel(self):
        gateway = self._gateway()
        guild = _FakeGuild(42)
        with mock.patch.object(gateway.client, "get_guild", return_value=guild):
            category_id = await gateway.create_category(42, "Open Tickets")
            await gateway.delete_category(42, category_id)
        self.assertTrue(guild.channels[category_id].deleted)


@unittest.skipIf(DiscordGateway is None, "discord.py not installed")
class DiscordGatewayConnectTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.handler = _RecordingHandler()
        self.gateway = DiscordGateway("token", event_log=_event_log(self.handler), intents=discord.Intents.none())
        self.client = self.gateway.client
        for name in ("login", "connect", "close"):
            patcher = mock.patch.object(self.client, name, new=mock.AsyncMock())
            patcher.start()
            self.addCleanup(patcher.stop)

    def _connect_until_ready(self, *, then: BaseException | None = None):
        self.released = asyncio.Event()

        async def fake_connect(*, reconnect=True):
            await self.client.on_ready()
            await self.released.wait()
            if then is not None:
                raise then

        self.client.connect.side_effect = fake_connect

    async def test_rejected_token_is_a_session_error(self):
        self.client.login.side_effect = discord.LoginFailure("Improper token has been passed.")
        with self.assertRaises(GatewaySessionError) as ctx:
            await self.gateway.connect()
        self.assertEqual(ctx.exception.operation, "login")
        self.client.connect.assert_not_called()

    async def test_unreachable_discord_during_login_is_a_connection_error(self):
        self.client.login.side_effect = aiohttp.ClientConnectionError("Cannot connect to host discord.com:443")
        with self.assertRaises(GatewayConnectionError) as ctx:
            await self.gateway.connect()
        self.assertEqual(ctx.exception.operation, "login")

    async def test_os_error_during_login_is_a_connection_error(self):
        self.client.login.side_effect = ConnectionResetError("connection reset by peer")
        with self.assertRaises(GatewayConnectionError):
            await self.gateway.connect()

    async def test_websocket_failure_before_ready_is_a_connection_error(self):
        self.client.connect.side_effect = discord.GatewayNotFound()
        with self.assertRaises(GatewayConnectionError) as ctx:
            await self.gateway.connect()
        self.assertEqual(ctx.exception.operation, "connect")

        await self.gateway.close()
        # connect() raised it; close() does not report it a second time.
        self.assertEqual([m for m in self.handler.messages() if m.startswith("Discord Connection Error")], [])

    async def test_connect_returns_once_ready_and_close_stops_the_session(self):
        self._connect_until_ready()
        lost: list[BaseException] = []
        self.gateway.on_session_lost(lost.append)

        await asyncio.wait_for(self.gateway.connect(), timeout=5)
        self.client.login.assert_awaited_once_with("token")

        self.released.set()
        await self.gateway.close()
        self.client.close.assert_awaited_once()
        self.assertEqual(lost, [])

    async def test_session_lost_after_ready_is_logged_and_reported(self):
        failure = discord.PrivilegedIntentsRequired(None)
        self._connect_until_ready(then=failure)
        lost: list[BaseException] = []
        self.gateway.on_session_lost(lost.append)

        await asyncio.wait_for(self.gateway.connect(), timeout=5)
        self.released.set()
        for _ in range(100):
            if lost:
                break
            await asyncio.sleep(0.01)

        self.assertEqual(lost, [failure])
        errors = [m for m in self.handler.messages() if m.startswith("Discord Connection Error")]
        self.assertEqual(len(errors), 1)

        await self.gateway.close()
        errors = [m for m in self.handler.messages() if m.startswith("Discord Connection Error")]
        self.assertEqual(len(errors), 1)

    async def test_close_reports_a_runner_failure_nobody_saw(self):
        failure = discord.ConnectionClosed(mock.Mock(close_code=4000), shard_id=None)
        self._connect_until_ready(then=failure)
        await asyncio.wait_for(self.gateway.connect(), timeout=5)

        # A failure that races with close() is still logged.
        self.gateway._closing = True
        self.released.set()
        await self.gateway.close()

        errors = [m for m in self.handler.messages() if m.startswith("Discord Connection Error")]
        self.assertEqual(len(errors), 1)


if __name__ == "__main__":
    unittest.main()
