from __future__ import annotations

import discord

from misc.runtime_deps import RuntimeDeps


def _guild_name(guild) -> str:
    name = getattr(guild, "name", None)
    if name:
        return str(name)
    return str(getattr(guild, "id", "unknown"))


def register_runtime_events(client: discord.Client, *, deps: RuntimeDeps) -> None:
    @client.event
    async def on_ready():
        deps.mark_ready()
        deps.event_log.connected(client.user)

    # on_guild_available fires for every guild at session start (and after
    # outages); on_guild_join only for guilds joined while running. Both mean
    # "this guild needs an assignment".
    @client.event
    async def on_guild_join(guild: discord.Guild):
        await deps.dispatch_guild_joined(int(guild.id), _guild_name(guild))

    @client.event
    async def on_guild_available(guild: discord.Guild):
        await deps.dispatch_guild_joined(int(guild.id), _guild_name(guild))

    @client.event
    async def on_guild_remove(guild: discord.Guild):
        await deps.dispatch_guild_left(int(guild.id), _guild_name(guild))
