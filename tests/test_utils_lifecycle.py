"""
Tests for the resource lifecycle manager.

## Test Perspectives Table

| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) | Expected Result | Notes |
|---------|---------------------|---------------------------------------|-----------------|-------|
| TC-RL-N-01 | Browser resources of one job | Equivalence – normal | Page, context, browser, driver closed in order | - |
| TC-RL-N-02 | cleanup_all | Equivalence – normal | Job resources and orphans closed | - |
| TC-RL-N-03 | get_resource_count filters | Equivalence – normal | Counts by type and job | - |
| TC-RL-B-01 | Unknown job / resource | Boundary – empty | {} / False | - |
| TC-RL-A-01 | close() raises | Abnormal | False, other resources still closed | - |
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from pagelens.utils.lifecycle import (
    ResourceLifecycleManager,
    ResourceType,
    cleanup_job,
    get_lifecycle_manager,
    register_browser_for_job,
)

pytestmark = pytest.mark.unit


def _closable(name: str, order: list[str], method: str = "close") -> MagicMock:
    resource = MagicMock()

    async def record() -> None:
        order.append(name)

    setattr(resource, method, AsyncMock(side_effect=record))
    return resource


class TestJobResources:
    """Job-scoped release."""

    @pytest.mark.asyncio
    async def test_browser_resources_closed_in_order(self):
        """TC-RL-N-01: Page and context close before the browser and driver."""
        # Given: A job's full browser stack registered
        order: list[str] = []
        ids = await register_browser_for_job(
            "job-1",
            browser=_closable("browser", order),
            context=_closable("context", order),
            page=_closable("page", order),
            playwright=_closable("playwright", order, method="stop"),
        )

        # When: Cleaning up the job
        results = await cleanup_job("job-1")

        # Then: Everything released, innermost first
        assert len(ids) == 4
        assert all(results.values())
        assert order == ["page", "context", "browser", "playwright"]
        assert get_lifecycle_manager().get_resource_count(job_id="job-1") == 0

    @pytest.mark.asyncio
    async def test_unknown_job_and_resource(self):
        """TC-RL-B-01: Nothing registered means nothing to clean."""
        manager = ResourceLifecycleManager()

        assert await manager.cleanup_job_resources("missing") == {}
        assert await manager.cleanup_resource("missing") is False

    @pytest.mark.asyncio
    async def test_close_failure_is_contained(self):
        """TC-RL-A-01: A failing close does not stop the other releases."""
        manager = ResourceLifecycleManager()
        order: list[str] = []
        broken = MagicMock()
        broken.close = AsyncMock(side_effect=RuntimeError("Target closed"))
        await manager.register_resource("page", ResourceType.PAGE, broken, "job-2")
        await manager.register_resource(
            "browser", ResourceType.BROWSER, _closable("browser", order), "job-2"
        )

        results = await manager.cleanup_job_resources("job-2")

        assert results == {"page": False, "browser": True}
        assert order == ["browser"]


class TestCleanupAll:
    """Process shutdown."""

    @pytest.mark.asyncio
    async def test_cleanup_all(self):
        """TC-RL-N-02: Job-owned and orphan resources are all released."""
        manager = ResourceLifecycleManager()
        order: list[str] = []
        await manager.register_resource(
            "page", ResourceType.PAGE, _closable("page", order), "job-1"
        )
        await manager.register_resource(
            "orphan", ResourceType.BROWSER, _closable("orphan", order)
        )

        results = await manager.cleanup_all()

        assert results == {"page": True, "orphan": True}
        assert order == ["page", "orphan"]
        assert manager.get_resource_count() == 0

    @pytest.mark.asyncio
    async def test_resource_count(self):
        """TC-RL-N-03: Counts can be filtered by type and job."""
        manager = ResourceLifecycleManager()
        await manager.register_resource("a", ResourceType.BROWSER, MagicMock(), "job-a")
        await manager.register_resource("b", ResourceType.PAGE, MagicMock(), "job-a")
        await manager.register_resource("c", ResourceType.BROWSER, MagicMock(), "job-b")

        assert manager.get_resource_count() == 3
        assert manager.get_resource_count(ResourceType.BROWSER) == 2
        assert manager.get_resource_count(job_id="job-a") == 2
        assert manager.get_resource_count(ResourceType.PAGE, "job-b") == 0
