from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable

from misc.event_log import EventLog

GuildHandler = Callable[[int, str], Awaitable[object]]


@dataclass(frozen=True)
class RuntimeDeps:
    event_log: EventLog

    # guild lifecycle fan-out
    dispatch_guild_joined: GuildHandler
    dispatch_guild_left: GuildHandler

    # readiness
    mark_ready: Callable[[], None]
