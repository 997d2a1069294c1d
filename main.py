import asyncio
import signal
import logging

from config import get_settings
from database import get_store, close_store
from ledger import LedgerClient
from resolver import UTXOResolver
from sync import ChainSync, SyncPolicy

logger = logging.getLogger(__name__)

def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

async def main():
    """Main application entry point."""
    settings = get_settings()
    configure_logging(settings['log_level'])

    client = LedgerClient(settings['ledger_url'], settings['ledger_timeout'])
    try:
        logger.info(f"Opening {settings['graph_backend']} graph store...")
        store = await get_store(settings)

        resolver = UTXOResolver(store, settings['resolve_strategy'])
        engine = ChainSync(store, client, resolver, SyncPolicy.from_settings(settings))

        if settings['poll_interval'] > 0:
            task = asyncio.create_task(engine.run_forever())
        else:
            task = asyncio.create_task(engine.run())

        def handle_shutdown():
            """Handle shutdown signals gracefully."""
            logger.info("Shutdown signal received. Cleaning up...")
            engine.stop()
            task.cancel()

        # Register shutdown handlers
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, handle_shutdown)

        try:
            await task
        except asyncio.CancelledError:
            logger.info("Sync cancelled")

        stats = engine.totals
        logger.info(
            f"Finished: {stats.blocks} blocks, {stats.transactions} transactions, "
            f"{stats.settled} spends settled, {stats.skipped} unresolved"
        )

    except Exception as e:
        logger.error(f"Fatal error: {e}")
        raise
    finally:
        client.close()
        await close_store()  # Close database connections

def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass

if __name__ == "__main__":
    run()
