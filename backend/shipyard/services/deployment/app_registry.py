"""
Authoritative in-memory collection of application records.

Every mutation is written through to the PersistenceGateway before it is
applied in memory; when the write fails the in-memory record is left as it
was and PersistenceError propagates to the caller.

Locking:
- ``_lock`` (registry-wide) serializes membership changes: port
  reservations, inserts and removals. It is never held across a
  container runtime call.
- one lock per record serializes status updates of that record, so
  distinct applications update in parallel.
Readers take no lock; they copy records between awaits, which gives a
consistent point-in-time view on the event loop.
"""
import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Set

from shipyard.core.exceptions import (
    AppNotFoundError,
    DuplicateAppIdError,
    InvalidTransitionError,
    PortInUseError,
)
from shipyard.services.deployment.application import Application, AppStatus, can_transition
from shipyard.services.deployment.port_allocator import PortAllocator, port_allocator
from shipyard.services.persistence_gateway import PersistenceGateway, persistence_gateway

logger = logging.getLogger(__name__)

# Marks optional update_status fields the caller did not pass
UNSET = object()

INTERRUPTED_MESSAGE = "deployment interrupted by controller restart"


class AppRegistry:
    """
    Concurrency-safe registry of Application records with port reservations.

    Records handed out by ``find`` and ``list_all`` are copies; mutating them
    has no effect on the registry.
    """

    def __init__(
        self,
        gateway: Optional[PersistenceGateway] = None,
        allocator: Optional[PortAllocator] = None,
    ):
        self.gateway = gateway if gateway is not None else persistence_gateway
        self.allocator = allocator if allocator is not None else port_allocator
        self._apps: Dict[str, Application] = {}
        self._record_locks: Dict[str, asyncio.Lock] = {}
        self._reserved_ports: Set[int] = set()
        self._retired_ids: Set[str] = set()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._apps)

    def __contains__(self, app_id: str) -> bool:
        return app_id in self._apps

    def _ports_in_use(self) -> Set[int]:
        held = {app.port for app in self._apps.values() if app.holds_port}
        return held | self._reserved_ports

    def _port_owner(self, port: int) -> Optional[str]:
        for app in self._apps.values():
            if app.holds_port and app.port == port:
                return app.id
        return None

    async def load(self) -> int:
        """
        Repopulate the registry from durable storage.

        Returns:
            Number of records loaded
        """
        apps = await self.gateway.load()
        async with self._lock:
            self._apps = {app.id: app for app in apps}
            self._record_locks = {app.id: asyncio.Lock() for app in apps}
            self._reserved_ports.clear()
        logger.info(f"Loaded {len(apps)} application(s) from storage")
        return len(apps)

    async def reserve_port(self, port: int) -> bool:
        """
        Provisionally reserve ``port`` for a creation in progress.

        Returns:
            True if reserved, False if held by a live application or already reserved
        """
        async with self._lock:
            if port in self._ports_in_use():
                return False
            self._reserved_ports.add(port)
            return True

    async def release_port(self, port: int) -> None:
        """Drop a provisional reservation. Unknown ports are ignored."""
        async with self._lock:
            self._reserved_ports.discard(port)
        logger.debug(f"Released port reservation {port}")

    async def allocate_port(self) -> int:
        """
        Allocate a free port and reserve it in one step.

        The allocator runs under the registry lock with every held and
        reserved port excluded, so concurrent creations never receive the
        same port.

        Raises:
            NoFreePortError: If the allocator finds nothing
        """
        async with self._lock:
            port = self.allocator.allocate(exclude=self._ports_in_use())
            self._reserved_ports.add(port)
            return port

    async def insert(self, app: Application) -> Application:
        """
        Add a new record, persisting it first.

        A provisional reservation on ``app.port`` is committed by the insert.

        Raises:
            DuplicateAppIdError: If the id is registered or was used before
            PortInUseError: If a live application holds the port
            PersistenceError: If the record could not be stored
        """
        async with self._lock:
            if app.id in self._apps or app.id in self._retired_ids:
                raise DuplicateAppIdError(app.id)
            owner = self._port_owner(app.port)
            if app.holds_port and owner is not None:
                raise PortInUseError(app.port, owner)

            record = app.copy()
            await self.gateway.save(record)

            self._apps[record.id] = record
            self._record_locks[record.id] = asyncio.Lock()
            self._reserved_ports.discard(record.port)

        logger.info(f"Registered app {record.id} ({record.name}) on port {record.port}")
        return record.copy()

    def find(self, app_id: str) -> Application:
        """
        Get a copy of one record.

        Raises:
            AppNotFoundError: If the id is unknown
        """
        app = self._apps.get(app_id)
        if app is None:
            raise AppNotFoundError(app_id)
        return app.copy()

    def list_all(self) -> List[Application]:
        """Snapshot of all records, oldest first."""
        apps = [app.copy() for app in self._apps.values()]
        return sorted(apps, key=lambda a: (a.created_at, a.id))

    async def update_status(
        self,
        app_id: str,
        status: AppStatus,
        container_ref=UNSET,
        error_message=UNSET,
        language=UNSET,
        image_ref=UNSET,
    ) -> Application:
        """
        Move a record to ``status`` and write it through to storage.

        Optional fields are only changed when passed. ``updated_at`` is
        always refreshed.

        Raises:
            AppNotFoundError: If the id is unknown (or removed meanwhile)
            InvalidTransitionError: If the lifecycle forbids the change
            PersistenceError: If the write fails; memory is left unchanged
        """
        lock = self._record_locks.get(app_id)
        if lock is None:
            raise AppNotFoundError(app_id)

        async with lock:
            current = self._apps.get(app_id)
            if current is None:
                raise AppNotFoundError(app_id)
            if not can_transition(current.status, status):
                raise InvalidTransitionError(app_id, current.status.value, status.value)

            changes = {"status": status, "updated_at": datetime.utcnow()}
            if container_ref is not UNSET:
                changes["container_ref"] = container_ref
            if error_message is not UNSET:
                changes["error_message"] = error_message
            if language is not UNSET:
                changes["language"] = language
            if image_ref is not UNSET:
                changes["image_ref"] = image_ref
            updated = replace(current, **changes)

            await self.gateway.save(updated)
            self._apps[app_id] = updated

        logger.debug(f"App {app_id}: {current.status.value} -> {status.value}")
        return updated.copy()

    async def remove(self, app_id: str) -> Application:
        """
        Delete a record from storage and then from memory, whatever its status.

        Returns:
            The removed record

        Raises:
            AppNotFoundError: If the id is unknown
            PersistenceError: If the delete fails; the record stays registered
        """
        lock = self._record_locks.get(app_id)
        if lock is None:
            raise AppNotFoundError(app_id)

        async with lock:
            async with self._lock:
                app = self._apps.get(app_id)
                if app is None:
                    raise AppNotFoundError(app_id)

                await self.gateway.delete(app_id)

                del self._apps[app_id]
                self._record_locks.pop(app_id, None)
                self._retired_ids.add(app_id)

        logger.info(f"Removed app {app_id} (port {app.port} freed)")
        return app

    async def reconcile_abandoned(self) -> List[str]:
        """
        Move records left mid-deployment by a previous run to Error.

        ``Deploying`` records go straight to Error; ``Idle`` records are
        stepped through Deploying so the observed status sequence stays legal.

        Returns:
            Ids of reconciled records
        """
        reconciled = []
        for app in self.list_all():
            if app.status == AppStatus.IDLE:
                await self.update_status(app.id, AppStatus.DEPLOYING)
            elif app.status != AppStatus.DEPLOYING:
                continue
            await self.update_status(app.id, AppStatus.ERROR, error_message=INTERRUPTED_MESSAGE)
            logger.warning(f"App {app.id} was abandoned mid-deployment, marked as error")
            reconciled.append(app.id)
        return reconciled


# Singleton instance
app_registry = AppRegistry()
