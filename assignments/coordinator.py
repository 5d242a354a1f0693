from __future__ import annotations

import asyncio
import enum
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, AsyncIterator

from assignments.errors import GatewayError
from assignments.errors import StoreError
from assignments.models import AssignmentRecord
from assignments.store import AssignmentStore
from config.defaults import DEFAULT_CLOSED_CATEGORY_NAME
from config.defaults import DEFAULT_COMPENSATE_ORPHANS
from config.defaults import DEFAULT_LEFT_POLICY
from config.defaults import DEFAULT_OPEN_CATEGORY_NAME
from config.defaults import LEFT_POLICIES
from misc.event_log import EventLog

if TYPE_CHECKING:
    from misc.gateway import GatewayClient


class JoinOutcome(enum.Enum):
    EXISTING = "existing"
    CREATED = "created"
    STORE_FAILED = "store_failed"
    PROVISION_FAILED = "provision_failed"
    REJECTED = "rejected"


class LeftOutcome(enum.Enum):
    RETAINED = "retained"
    DELETED = "deleted"
    ABSENT = "absent"
    STORE_FAILED = "store_failed"
    REJECTED = "rejected"


@dataclass(slots=True)
class _LockEntry:
    lock: asyncio.Lock
    refs: int = 0


class KeyedLock:
    """Mutual exclusion per key. Entries are created on first use and dropped
    once nobody holds or waits on them."""

    def __init__(self) -> None:
        self._entries: dict[int, _LockEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: int) -> bool:
        return key in self._entries

    @asynccontextmanager
    async def hold(self, key: int) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = _LockEntry(asyncio.Lock())
            self._entries[key] = entry
        entry.refs += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.refs -= 1
            if entry.refs == 0 and self._entries.get(key) is entry:
                del self._entries[key]


class AssignmentCoordinator:
    """Reacts to guild lifecycle notifications.

    For a joined guild: lookup, and on a miss create the open then the closed
    category and upsert the record. The whole sequence runs under the guild's
    lock so overlapping notifications for one guild never provision twice.
    A record is written only after both categories exist.
    """

    def __init__(
        self,
        store: AssignmentStore,
        gateway: GatewayClient,
        *,
        event_log: EventLog | None = None,
        open_category_name: str = DEFAULT_OPEN_CATEGORY_NAME,
        closed_category_name: str = DEFAULT_CLOSED_CATEGORY_NAME,
        left_policy: str = DEFAULT_LEFT_POLICY,
        compensate_orphans: bool = DEFAULT_COMPENSATE_ORPHANS,
    ) -> None:
        if left_policy not in LEFT_POLICIES:
            raise ValueError(f"unknown left_policy: {left_policy!r}")
        self.store = store
        self.gateway = gateway
        self.event_log = event_log or store.event_log
        self.open_category_name = open_category_name
        self.closed_category_name = closed_category_name
        self.left_policy = left_policy
        self.compensate_orphans = bool(compensate_orphans)

        self.guild_locks = KeyedLock()
        self._accepting = True
        self._inflight = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def accepting(self) -> bool:
        return self._accepting

    def attach(self, gateway: GatewayClient | None = None) -> None:
        gw = gateway or self.gateway
        gw.on_guild_joined(self.handle_guild_joined)
        gw.on_guild_left(self.handle_guild_left)

    @asynccontextmanager
    async def _track(self) -> AsyncIterator[None]:
        self._inflight += 1
        self._idle.clear()
        try:
            yield
        finally:
            self._inflight -= 1
            if self._inflight == 0:
                self._idle.set()

    async def handle_guild_joined(self, guild_id: int, guild_name: str) -> JoinOutcome:
        guild_id = int(guild_id)
        self.event_log.joined_guild(guild_name, guild_id=guild_id)
        if not self._accepting:
            self.event_log.notification_rejected(guild_name, guild_id=guild_id, operation="guild_joined")
            return JoinOutcome.REJECTED

        async with self._track():
            async with self.guild_locks.hold(guild_id):
                return await self._ensure_assignment(guild_id, guild_name)

    async def _ensure_assignment(self, guild_id: int, guild_name: str) -> JoinOutcome:
        try:
            existing = await self.store.lookup_async(guild_id)
        except StoreError as exc:
            self.event_log.store_error(exc, fatal=False, guild_id=guild_id, operation="lookup")
            return JoinOutcome.STORE_FAILED

        if existing is not None:
            self.event_log.assignment_found(guild_name, guild_id=guild_id)
            return JoinOutcome.EXISTING

        created: list[int] = []
        try:
            for name in (self.open_category_name, self.closed_category_name):
                category_id = await self.gateway.create_category(guild_id, name)
                created.append(int(category_id))
                self.event_log.category_provisioned(name, guild_id=guild_id, category_id=int(category_id))
            record = AssignmentRecord(guild_id, created[0], created[1])
        except (GatewayError, ValueError) as exc:
            self.event_log.gateway_error(exc, guild_id=guild_id, operation="create_category")
            await self._discard_categories(guild_id, created)
            return JoinOutcome.PROVISION_FAILED

        try:
            await self.store.upsert_async(record)
        except StoreError as exc:
            self.event_log.store_error(exc, fatal=False, guild_id=guild_id, operation="upsert")
            await self._discard_categories(guild_id, created)
            return JoinOutcome.STORE_FAILED

        self.event_log.assignment_created(guild_name, guild_id=guild_id)
        return JoinOutcome.CREATED

    async def _discard_categories(self, guild_id: int, category_ids: list[int]) -> None:
        if not self.compensate_orphans:
            return
        for category_id in reversed(category_ids):
            try:
                await self.gateway.delete_category(guild_id, category_id)
            except GatewayError as exc:
                self.event_log.compensation_failed(
                    exc, guild_id=guild_id, category_id=category_id, operation="delete_category"
                )

    async def handle_guild_left(self, guild_id: int, guild_name: str) -> LeftOutcome:
        guild_id = int(guild_id)
        self.event_log.left_guild(guild_name, guild_id=guild_id)
        if not self._accepting:
            self.event_log.notification_rejected(guild_name, guild_id=guild_id, operation="guild_left")
            return LeftOutcome.REJECTED
        if self.left_policy == "retain":
            return LeftOutcome.RETAINED

        async with self._track():
            async with self.guild_locks.hold(guild_id):
                try:
                    removed = await self.store.delete_async(guild_id)
                except StoreError as exc:
                    self.event_log.store_error(exc, fatal=False, guild_id=guild_id, operation="delete")
                    return LeftOutcome.STORE_FAILED
        if not removed:
            return LeftOutcome.ABSENT
        self.event_log.assignment_deleted(guild_name, guild_id=guild_id)
        return LeftOutcome.DELETED

    async def close(self) -> None:
        """Stop accepting notifications and wait for in-flight ones to finish."""
        self._accepting = False
        await self._idle.wait()
