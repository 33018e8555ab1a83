"""
Main entry point for pagelens.
"""

import argparse
import asyncio
import json

from pagelens.storage.database import close_database, get_database
from pagelens.utils.config import ensure_directories, get_settings
from pagelens.utils.logging import configure_logging, get_logger


async def initialize() -> None:
    """Initialize the application."""
    ensure_directories()

    settings = get_settings()
    configure_logging()

    logger = get_logger(__name__)
    logger.info(
        "pagelens initializing",
        version=settings.general.version,
        log_level=settings.general.log_level,
    )

    db = await get_database()
    await db.mark_interrupted_jobs()

    logger.info("pagelens initialized successfully")


async def shutdown() -> None:
    """Shutdown the application."""
    logger = get_logger(__name__)
    logger.info("pagelens shutting down")

    await close_database()

    logger.info("pagelens shutdown complete")


async def run_crawl(url: str, depth: int) -> dict:
    """Run one crawl job in-process until it finishes.

    Args:
        url: Root URL.
        depth: Maximum crawl depth.

    Returns:
        Final status projection of the job.
    """
    from pagelens.advisory.client import GeminiAdvisoryClient
    from pagelens.events.broadcaster import EventBroadcaster
    from pagelens.ocr.recognition import TesseractRecognitionClient
    from pagelens.scheduler.registry import JobRegistry

    logger = get_logger(__name__)
    broadcaster = EventBroadcaster(get_settings().events.subscriber_queue_size)
    broadcaster.start()
    registry = JobRegistry(
        await get_database(),
        broadcaster,
        recognition_client=TesseractRecognitionClient(),
        advisory_client=GeminiAdvisoryClient(),
    )

    try:
        job_id = await registry.create_and_start(url, depth)
        try:
            await registry.wait(job_id)
        except asyncio.CancelledError:
            logger.info("Crawl interrupted, stopping job", job_id=job_id)
            await registry.stop(job_id)
            raise
        snapshot = await registry.status(job_id)
        return snapshot.to_status_dict()
    finally:
        await registry.shutdown()
        await broadcaster.stop()


def serve(host: str | None = None, port: int | None = None) -> None:
    """Serve the HTTP API with uvicorn."""
    import uvicorn

    from pagelens.api.server import create_app

    settings = get_settings()
    ensure_directories()
    configure_logging()
    uvicorn.run(
        create_app(),
        host=host or settings.api.host,
        port=port or settings.api.port,
        log_config=None,
    )


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="pagelens - crawl, capture and recognise web pages"
    )
    parser.add_argument(
        "command",
        choices=["init", "serve", "crawl"],
        help="Command to run",
    )
    parser.add_argument(
        "--url", "-u",
        type=str,
        help="Root URL (for 'crawl' command)",
    )
    parser.add_argument(
        "--depth", "-d",
        type=int,
        default=None,
        help="Maximum crawl depth 1-10 (for 'crawl' command)",
    )
    parser.add_argument("--host", type=str, help="Bind address (for 'serve' command)")
    parser.add_argument("--port", type=int, help="Bind port (for 'serve' command)")

    args = parser.parse_args()

    if args.command == "serve":
        serve(args.host, args.port)
        return

    if args.command == "crawl":
        from pydantic import ValidationError

        from pagelens.api.schemas import StartCrawlRequest

        if not args.url:
            parser.error("--url is required for crawl command")
        depth = args.depth if args.depth is not None else get_settings().crawler.default_depth
        try:
            request = StartCrawlRequest(url=args.url, depth=depth)
        except ValidationError as e:
            parser.error(f"invalid crawl parameters: {e.errors(include_url=False)}")

    async def async_main():
        await initialize()

        try:
            if args.command == "init":
                print("pagelens initialized successfully.")

            elif args.command == "crawl":
                status = await run_crawl(str(request.url), request.depth)
                print(json.dumps(status, indent=2))

        finally:
            await shutdown()

    asyncio.run(async_main())


if __name__ == "__main__":
    main()
