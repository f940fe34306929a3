"""Entry point: in-memory marketplace served over gRPC."""

import asyncio

import structlog

from .config import Settings
from .handler import MarketplaceHandler
from .seed import seed_store
from .server import configure_logging, run_server
from .store import MemoryStore

logger = structlog.get_logger()


async def serve(settings: Settings) -> None:
    store = MemoryStore()
    if settings.seed:
        await seed_store(store, logger)
    if settings.uses_dev_secret():
        logger.warning("qr_secret_not_configured")
    handler = MarketplaceHandler(store, settings.qr_secret, logger)
    await run_server(handler, settings, logger)


def main() -> None:
    configure_logging()
    asyncio.run(serve(Settings.from_env()))


if __name__ == "__main__":
    main()
