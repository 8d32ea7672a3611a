"""
Tests for AppRegistry.

Covers write-through persistence, port uniqueness, lifecycle transitions
and restart reconciliation.
"""
import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from conftest import SequenceRandom
from shipyard.core.exceptions import (
    AppNotFoundError,
    DuplicateAppIdError,
    InvalidTransitionError,
    PersistenceError,
    PortInUseError,
)
from shipyard.services.deployment.app_registry import INTERRUPTED_MESSAGE, AppRegistry
from shipyard.services.deployment.application import AppStatus
from shipyard.services.deployment.port_allocator import PortAllocator


class TestInsertAndFind:
    """Tests for insert, find and list_all."""

    @pytest.mark.asyncio
    async def test_insert_then_find(self, registry, make_app):
        """Test an inserted record can be found by id."""
        app = make_app(port=4100)

        await registry.insert(app)
        found = registry.find(app.id)

        assert found.id == app.id
        assert found.port == 4100
        assert found.status == AppStatus.IDLE
        assert app.id in registry
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_insert_persists_before_returning(self, registry, gateway, make_app):
        """Test the record is durable once insert returns."""
        app = make_app()

        await registry.insert(app)

        stored = await gateway.load()
        assert [a.id for a in stored] == [app.id]

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, registry, make_app):
        """Test a second record with the same id is refused."""
        await registry.insert(make_app(id="app_dup", port=4200))

        with pytest.raises(DuplicateAppIdError):
            await registry.insert(make_app(id="app_dup", port=4201))

        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_removed_id_is_never_reused(self, registry, make_app):
        """Test an id stays retired after its record is removed."""
        await registry.insert(make_app(id="app_once"))
        await registry.remove("app_once")

        with pytest.raises(DuplicateAppIdError):
            await registry.insert(make_app(id="app_once"))

    @pytest.mark.asyncio
    async def test_port_held_by_live_app_rejected(self, registry, make_app):
        """Test two live records can not share a port."""
        first = await registry.insert(make_app(port=4300))

        with pytest.raises(PortInUseError) as exc_info:
            await registry.insert(make_app(port=4300))

        assert exc_info.value.details["owner"] == first.id

    @pytest.mark.asyncio
    async def test_port_of_errored_app_can_be_reused(self, registry, make_app):
        """Test an errored record no longer holds its port."""
        first = await registry.insert(make_app(port=4400))
        await registry.update_status(first.id, AppStatus.DEPLOYING)
        await registry.update_status(first.id, AppStatus.ERROR, error_message="build_image failed: boom")

        second = await registry.insert(make_app(port=4400))

        assert second.port == 4400

    @pytest.mark.asyncio
    async def test_find_unknown_raises(self, registry):
        with pytest.raises(AppNotFoundError):
            registry.find("app_missing")

    @pytest.mark.asyncio
    async def test_find_returns_copy(self, registry, make_app):
        """Test mutating a returned record does not change the registry."""
        app = await registry.insert(make_app())

        found = registry.find(app.id)
        found.status = AppStatus.RUNNING
        found.port = 1

        again = registry.find(app.id)
        assert again.status == AppStatus.IDLE
        assert again.port == app.port

    @pytest.mark.asyncio
    async def test_list_all_is_ordered_by_creation(self, registry, make_app):
        """Test list_all returns the oldest record first."""
        a = await registry.insert(make_app())
        b = await registry.insert(make_app())
        c = await registry.insert(make_app())

        assert [app.id for app in registry.list_all()] == [a.id, b.id, c.id]

    @pytest.mark.asyncio
    async def test_insert_failure_leaves_registry_empty(self, registry, gateway, make_app):
        """Test a failed write keeps the record out of memory."""
        with patch.object(gateway, "save", new_callable=AsyncMock) as mock_save:
            mock_save.side_effect = PersistenceError("save", "disk full")

            with pytest.raises(PersistenceError):
                await registry.insert(make_app(id="app_lost"))

        assert "app_lost" not in registry


class TestUpdateStatus:
    """Tests for update_status."""

    @pytest.mark.asyncio
    async def test_legal_transitions(self, registry, gateway, make_app):
        """Test Idle -> Deploying -> Running is written through."""
        app = await registry.insert(make_app())

        await registry.update_status(app.id, AppStatus.DEPLOYING)
        running = await registry.update_status(
            app.id,
            AppStatus.RUNNING,
            container_ref="cid-1",
            language="go",
            image_ref="shipyard_img",
        )

        assert running.status == AppStatus.RUNNING
        assert running.container_ref == "cid-1"
        assert running.language == "go"
        assert running.updated_at >= app.updated_at

        stored = {a.id: a for a in await gateway.load()}[app.id]
        assert stored.status == AppStatus.RUNNING
        assert stored.container_ref == "cid-1"
        assert stored.image_ref == "shipyard_img"

    @pytest.mark.asyncio
    async def test_unset_fields_are_left_alone(self, registry, make_app):
        """Test optional fields only change when passed."""
        app = await registry.insert(make_app(language="python"))

        updated = await registry.update_status(app.id, AppStatus.DEPLOYING)

        assert updated.language == "python"
        assert updated.error_message is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path,target", [
        ([], AppStatus.RUNNING),
        ([], AppStatus.ERROR),
        ([AppStatus.DEPLOYING], AppStatus.IDLE),
        ([AppStatus.DEPLOYING, AppStatus.RUNNING], AppStatus.DEPLOYING),
        ([AppStatus.DEPLOYING, AppStatus.ERROR], AppStatus.DEPLOYING),
        ([AppStatus.DEPLOYING, AppStatus.ERROR], AppStatus.RUNNING),
    ])
    async def test_illegal_transitions_rejected(self, registry, make_app, path, target):
        """Test transitions outside the lifecycle raise and change nothing."""
        app = await registry.insert(make_app())
        for status in path:
            await registry.update_status(app.id, status)
        before = registry.find(app.id)

        with pytest.raises(InvalidTransitionError):
            await registry.update_status(app.id, target)

        assert registry.find(app.id).status == before.status

    @pytest.mark.asyncio
    async def test_unknown_app_raises(self, registry):
        with pytest.raises(AppNotFoundError):
            await registry.update_status("app_missing", AppStatus.DEPLOYING)

    @pytest.mark.asyncio
    async def test_persistence_failure_keeps_memory_unchanged(self, registry, gateway, make_app):
        """Test a failed write leaves the in-memory status as it was."""
        app = await registry.insert(make_app())

        with patch.object(gateway, "save", new_callable=AsyncMock) as mock_save:
            mock_save.side_effect = PersistenceError("save", "connection lost")

            with pytest.raises(PersistenceError):
                await registry.update_status(app.id, AppStatus.DEPLOYING)

        assert registry.find(app.id).status == AppStatus.IDLE
        stored = await gateway.load()
        assert stored[0].status == AppStatus.IDLE


class TestRemove:
    """Tests for remove."""

    @pytest.mark.asyncio
    async def test_remove_deletes_from_memory_and_storage(self, registry, gateway, make_app):
        app = await registry.insert(make_app(port=4500))

        removed = await registry.remove(app.id)

        assert removed.id == app.id
        assert app.id not in registry
        assert await gateway.load() == []

    @pytest.mark.asyncio
    async def test_second_remove_raises_not_found(self, registry, make_app):
        """Test removal is not silently repeated."""
        app = await registry.insert(make_app())
        await registry.remove(app.id)

        with pytest.raises(AppNotFoundError):
            await registry.remove(app.id)

    @pytest.mark.asyncio
    async def test_remove_frees_the_port(self, registry, make_app):
        await registry.insert(make_app(port=4600))
        await registry.remove(registry.list_all()[0].id)

        assert await registry.reserve_port(4600) is True

    @pytest.mark.asyncio
    async def test_remove_persistence_failure_keeps_record(self, registry, gateway, make_app):
        app = await registry.insert(make_app())

        with patch.object(gateway, "delete", new_callable=AsyncMock) as mock_delete:
            mock_delete.side_effect = PersistenceError("delete", "locked")

            with pytest.raises(PersistenceError):
                await registry.remove(app.id)

        assert app.id in registry


class TestPortReservation:
    """Tests for allocate_port, reserve_port and release_port."""

    @pytest.mark.asyncio
    async def test_reserve_and_release(self, registry):
        assert await registry.reserve_port(5000) is True
        assert await registry.reserve_port(5000) is False

        await registry.release_port(5000)

        assert await registry.reserve_port(5000) is True

    @pytest.mark.asyncio
    async def test_reserve_port_held_by_live_app(self, registry, make_app):
        await registry.insert(make_app(port=5100))

        assert await registry.reserve_port(5100) is False

    @pytest.mark.asyncio
    async def test_release_unknown_port_is_ignored(self, registry):
        await registry.release_port(5999)

    @pytest.mark.asyncio
    async def test_insert_commits_reservation(self, registry, make_app):
        """Test the reserved port is owned by the record after insert."""
        port = await registry.allocate_port()
        await registry.insert(make_app(port=port))

        assert port not in registry._reserved_ports
        assert await registry.reserve_port(port) is False

    @pytest.mark.asyncio
    async def test_concurrent_allocations_get_distinct_ports(self, gateway):
        """Test two allocations offered the same candidate never share it."""
        allocator = PortAllocator(3000, 9999, rng=SequenceRandom([4000, 4000, 4001]))
        allocator.is_port_free = lambda port: True
        registry = AppRegistry(gateway=gateway, allocator=allocator)

        ports = await asyncio.gather(registry.allocate_port(), registry.allocate_port())

        assert sorted(ports) == [4000, 4001]

    @pytest.mark.asyncio
    async def test_allocation_skips_ports_of_live_apps(self, gateway, make_app):
        allocator = PortAllocator(3000, 9999, rng=SequenceRandom([4700, 4701]))
        allocator.is_port_free = lambda port: True
        registry = AppRegistry(gateway=gateway, allocator=allocator)
        await registry.insert(make_app(port=4700))

        assert await registry.allocate_port() == 4701


class TestLoadAndReconcile:
    """Tests for load and reconcile_abandoned."""

    @pytest.mark.asyncio
    async def test_load_restores_records(self, registry, gateway, allocator, make_app):
        """Test a fresh registry sees what a previous one stored."""
        a = await registry.insert(make_app())
        b = await registry.insert(make_app())
        await registry.update_status(b.id, AppStatus.DEPLOYING)

        fresh = AppRegistry(gateway=gateway, allocator=allocator)
        count = await fresh.load()

        assert count == 2
        assert fresh.find(a.id).status == AppStatus.IDLE
        assert fresh.find(b.id).status == AppStatus.DEPLOYING

    @pytest.mark.asyncio
    async def test_reconcile_marks_abandoned_records_as_error(self, registry, gateway, allocator, make_app):
        """Test Idle and Deploying records left by a previous run end up in Error."""
        idle = await registry.insert(make_app())
        deploying = await registry.insert(make_app())
        await registry.update_status(deploying.id, AppStatus.DEPLOYING)
        running = await registry.insert(make_app())
        await registry.update_status(running.id, AppStatus.DEPLOYING)
        await registry.update_status(running.id, AppStatus.RUNNING, container_ref="cid")

        fresh = AppRegistry(gateway=gateway, allocator=allocator)
        await fresh.load()
        reconciled = await fresh.reconcile_abandoned()

        assert sorted(reconciled) == sorted([idle.id, deploying.id])
        for app_id in (idle.id, deploying.id):
            app = fresh.find(app_id)
            assert app.status == AppStatus.ERROR
            assert app.error_message == INTERRUPTED_MESSAGE
        assert fresh.find(running.id).status == AppStatus.RUNNING

        stored = {a.id: a for a in await gateway.load()}
        assert stored[deploying.id].status == AppStatus.ERROR

    @pytest.mark.asyncio
    async def test_reconcile_with_nothing_abandoned(self, registry):
        assert await registry.reconcile_abandoned() == []
