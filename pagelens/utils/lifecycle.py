"""
Resource lifecycle management for crawl jobs.

Every crawl job owns a browser, a browser context and possibly an HTTP
session for the advisory client. Those resources are registered here
against the job id so that a terminal transition (complete, fail, stop)
releases them exactly once, and process shutdown releases whatever is left.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import aiohttp

from pagelens.utils.logging import get_logger

logger = get_logger(__name__)


class ResourceType(Enum):
    """Types of managed resources."""

    BROWSER = "browser"
    BROWSER_CONTEXT = "browser_context"
    PAGE = "page"
    PLAYWRIGHT = "playwright"
    HTTP_SESSION = "http_session"


@dataclass
class ResourceInfo:
    """Information about a tracked resource."""

    resource_type: ResourceType
    resource: Any
    job_id: str | None = None
    created_at: float = field(default_factory=time.time)


class ResourceLifecycleManager:
    """Tracks external resources per crawl job and releases them on demand."""

    def __init__(self) -> None:
        self._resources: dict[str, ResourceInfo] = {}
        self._job_resources: dict[str, set[str]] = {}
        self._lock = asyncio.Lock()

    async def register_resource(
        self,
        resource_id: str,
        resource_type: ResourceType,
        resource: Any,
        job_id: str | None = None,
    ) -> None:
        """Register a resource for lifecycle management.

        Args:
            resource_id: Unique identifier for the resource.
            resource_type: Type of the resource.
            resource: The actual resource object.
            job_id: Owning crawl job for job-scoped cleanup.
        """
        async with self._lock:
            self._resources[resource_id] = ResourceInfo(
                resource_type=resource_type,
                resource=resource,
                job_id=job_id,
            )
            if job_id:
                self._job_resources.setdefault(job_id, set()).add(resource_id)

        logger.debug(
            "Registered resource",
            resource_id=resource_id,
            resource_type=resource_type.value,
            job_id=job_id,
        )

    async def cleanup_resource(self, resource_id: str) -> bool:
        """Cleanup and unregister a specific resource.

        Returns:
            True if cleanup was successful.
        """
        async with self._lock:
            info = self._resources.pop(resource_id, None)
            if info is None:
                return False
            if info.job_id and info.job_id in self._job_resources:
                self._job_resources[info.job_id].discard(resource_id)

        return await self._cleanup_single_resource(info)

    async def cleanup_job_resources(self, job_id: str) -> dict[str, bool]:
        """Release every resource owned by a job.

        Pages and contexts are closed before browsers, browsers before the
        Playwright driver.

        Args:
            job_id: Crawl job identifier.

        Returns:
            Dict mapping resource_id to cleanup success status.
        """
        async with self._lock:
            resource_ids = self._job_resources.pop(job_id, set())
            ordered = sorted(
                resource_ids,
                key=lambda rid: _CLEANUP_ORDER.index(self._resources[rid].resource_type)
                if rid in self._resources
                else len(_CLEANUP_ORDER),
            )

        if not ordered:
            logger.debug("No resources to cleanup for job", job_id=job_id)
            return {}

        results = {}
        for resource_id in ordered:
            results[resource_id] = await self.cleanup_resource(resource_id)

        logger.info(
            "Job resource cleanup complete",
            job_id=job_id,
            success_count=sum(1 for v in results.values() if v),
            total_count=len(results),
        )
        return results

    async def cleanup_all(self) -> dict[str, bool]:
        """Release every registered resource, job-owned ones first."""
        async with self._lock:
            job_ids = list(self._job_resources.keys())

        results: dict[str, bool] = {}
        for job_id in job_ids:
            results.update(await self.cleanup_job_resources(job_id))

        async with self._lock:
            orphan_ids = list(self._resources.keys())
        for resource_id in orphan_ids:
            results[resource_id] = await self.cleanup_resource(resource_id)

        return results

    def get_resource_count(
        self,
        resource_type: ResourceType | None = None,
        job_id: str | None = None,
    ) -> int:
        """Get count of registered resources, optionally filtered."""
        count = 0
        for info in self._resources.values():
            if resource_type and info.resource_type != resource_type:
                continue
            if job_id and info.job_id != job_id:
                continue
            count += 1
        return count

    async def _cleanup_single_resource(self, info: ResourceInfo) -> bool:
        try:
            resource = info.resource
            resource_type = info.resource_type

            if resource_type in (
                ResourceType.PAGE,
                ResourceType.BROWSER_CONTEXT,
                ResourceType.BROWSER,
            ):
                await resource.close()
            elif resource_type == ResourceType.PLAYWRIGHT:
                await resource.stop()
            elif resource_type == ResourceType.HTTP_SESSION:
                await self._cleanup_http_session(resource)
            else:
                logger.warning("Unknown resource type", resource_type=resource_type.value)
                return False

            logger.debug(
                "Cleaned up resource",
                resource_type=resource_type.value,
                job_id=info.job_id,
            )
            return True

        except Exception as e:
            logger.error(
                "Resource cleanup failed",
                resource_type=info.resource_type.value,
                error=str(e),
            )
            return False

    async def _cleanup_http_session(self, session: aiohttp.ClientSession) -> None:
        if not session.closed:
            await session.close()


_CLEANUP_ORDER = [
    ResourceType.PAGE,
    ResourceType.BROWSER_CONTEXT,
    ResourceType.BROWSER,
    ResourceType.PLAYWRIGHT,
    ResourceType.HTTP_SESSION,
]


# Global lifecycle manager instance
_lifecycle_manager: ResourceLifecycleManager | None = None


def get_lifecycle_manager() -> ResourceLifecycleManager:
    """Get or create the global lifecycle manager."""
    global _lifecycle_manager
    if _lifecycle_manager is None:
        _lifecycle_manager = ResourceLifecycleManager()
    return _lifecycle_manager


async def register_browser_for_job(
    job_id: str,
    browser: Any,
    context: Any = None,
    page: Any = None,
    playwright: Any = None,
) -> list[str]:
    """Register browser resources for job-scoped lifecycle management.

    Args:
        job_id: Crawl job identifier.
        browser: Playwright browser object.
        context: Playwright browser context (optional).
        page: Playwright page (optional).
        playwright: Playwright driver instance (optional).

    Returns:
        List of registered resource IDs.
    """
    manager = get_lifecycle_manager()
    resource_ids = []

    for resource_type, resource in (
        (ResourceType.BROWSER, browser),
        (ResourceType.BROWSER_CONTEXT, context),
        (ResourceType.PAGE, page),
        (ResourceType.PLAYWRIGHT, playwright),
    ):
        if resource is None:
            continue
        resource_id = f"{resource_type.value}_{job_id}_{id(resource)}"
        await manager.register_resource(resource_id, resource_type, resource, job_id)
        resource_ids.append(resource_id)

    return resource_ids


async def cleanup_job(job_id: str) -> dict[str, bool]:
    """Cleanup all resources for a finished job."""
    return await get_lifecycle_manager().cleanup_job_resources(job_id)
