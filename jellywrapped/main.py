import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Optional

import uvicorn

from .config import settings
from .database import library_db, playback_db
from .formatting import format_duration
from .service import UserNotFoundError, wrapped_service

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def connect_databases() -> None:
    await playback_db.connect()
    logger.info(f"Connected to playback database: {settings.playback_database_path}")
    await library_db.connect()
    logger.info(f"Connected to library database: {settings.jellyfin_database_path}")


async def close_databases() -> None:
    await library_db.close()
    await playback_db.close()


class JellywrappedServer:
    def __init__(self):
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start the review API."""
        logger.info("Starting Jellywrapped...")
        await connect_databases()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda: asyncio.create_task(self.shutdown()))

        web_task = asyncio.create_task(self._run_web_server())
        logger.info(f"Review API available at http://localhost:{settings.api_port}")

        await self._shutdown_event.wait()

        web_task.cancel()
        try:
            await web_task
        except asyncio.CancelledError:
            pass

        await close_databases()
        logger.info("Jellywrapped stopped")

    async def shutdown(self) -> None:
        """Signal shutdown."""
        logger.info("Shutting down...")
        self._shutdown_event.set()

    async def _run_web_server(self) -> None:
        """Run the FastAPI web server."""
        from review_api.app import app

        config = uvicorn.Config(
            app,
            host="0.0.0.0",
            port=settings.api_port,
            log_level="info",
        )
        server = uvicorn.Server(config)
        try:
            await server.serve()
        except asyncio.CancelledError:
            pass


async def run_review(user: str, year: int, timezone: Optional[str]) -> dict:
    await connect_databases()
    try:
        user_id = await wrapped_service.resolve_user_id(user)
        review = await wrapped_service.get_year_review(user_id, year, timezone)
        logger.info(
            f"{user} watched {format_duration(review.stats.total_seconds / 60)} in {year} "
            f"({review.personality})"
        )
        return review.model_dump(mode="json")
    finally:
        await close_databases()


async def run_compare(user: str, year: int) -> dict:
    await connect_databases()
    try:
        user_id = await wrapped_service.resolve_user_id(user)
        ranking = await wrapped_service.get_user_ranking(user_id, year)
        comparison = await wrapped_service.get_user_comparison(user_id, year)
        return {"ranking": ranking.model_dump(), "comparison": comparison.model_dump()}
    finally:
        await close_databases()


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Jellywrapped - Jellyfin year in review")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("serve", help="Run the review API (default)")

    review_parser = subparsers.add_parser("review", help="Print a user's year in review as JSON")
    review_parser.add_argument("user", help="Jellyfin user id or username")
    review_parser.add_argument("year", type=int, help="Year to review")
    review_parser.add_argument(
        "--timezone",
        default=None,
        help=f"IANA timezone for hourly and daily stats (default: {settings.timezone})",
    )

    compare_parser = subparsers.add_parser(
        "compare", help="Print how a user ranks against everybody else"
    )
    compare_parser.add_argument("user", help="Jellyfin user id or username")
    compare_parser.add_argument("year", type=int, help="Year to compare")

    args = parser.parse_args()

    if settings.uses_reporting_api and not settings.jellyfin_api_key:
        logger.error("JELLYFIN_API_KEY is not set. Please set it in .env file.")
        sys.exit(1)

    try:
        if args.command == "review":
            result = asyncio.run(run_review(args.user, args.year, args.timezone))
            print(json.dumps(result, indent=2, ensure_ascii=False))
            return
        if args.command == "compare":
            result = asyncio.run(run_compare(args.user, args.year))
            print(json.dumps(result, indent=2))
            return
    except UserNotFoundError as e:
        logger.error(str(e))
        sys.exit(1)

    server = JellywrappedServer()
    asyncio.run(server.start())


if __name__ == "__main__":
    main()
