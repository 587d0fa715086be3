"""
FX Trader runner.

Loads .env and config.yaml, recovers persisted scheduled tasks and keeps the
engine alive so they fire on time.

Usage:
    python -m fxtrader
    python -m fxtrader --config config.yaml --env-file .env
    python -m fxtrader --list
"""

import argparse
import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger

from .broker.oanda import OandaGateway
from .config import EngineConfig, load_config
from .core.exceptions import TradingError
from .core.task_store import SqliteTaskStore
from .engine import TradingEngine


def configure_logging(config: EngineConfig) -> None:
    """Console sink at the configured level plus a rotating file sink."""
    logger.remove()
    logger.add(sys.stderr, level=config.log_level)

    log_dir = Path(config.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_dir / "fxtrader_{time:YYYY-MM-DD}.log",
        level=config.log_level,
        rotation="10 MB",
        retention="30 days",
        enqueue=True,
    )


def list_pending(config: EngineConfig) -> int:
    store = SqliteTaskStore(config.store_path)
    try:
        tasks = [t for t in store.list_all() if t.is_pending]
    finally:
        store.close()

    if not tasks:
        print("No pending scheduled tasks")
        return 0

    for task in tasks:
        trades = ", ".join(f"{i.direction} {i.instrument}" for i in task.intents)
        print(f"{task.id}  {task.fire_at.isoformat()}  {trades}")
    return 0


async def run(config: EngineConfig) -> None:
    store = SqliteTaskStore(config.store_path)
    try:
        gateway = OandaGateway(
            environment=config.environment,
            registry=config.build_registry(),
            timeout=config.request_timeout_seconds,
        )
        try:
            async with TradingEngine(gateway, store, config=config) as engine:
                logger.info(f"{len(engine.pending())} scheduled task(s) pending; running until interrupted")
                await asyncio.Event().wait()
        finally:
            await gateway.aclose()
    finally:
        store.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Run the FX Trader execution engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m fxtrader                      # Recover tasks and run
  python -m fxtrader --config prod.yaml   # Use another config file
  python -m fxtrader --list               # Print pending scheduled tasks
        """
    )
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    parser.add_argument("--env-file", default=".env", help="Path to .env with OANDA credentials")
    parser.add_argument("--list", action="store_true", help="List pending scheduled tasks and exit")
    args = parser.parse_args(argv)

    load_dotenv(args.env_file, override=False)

    try:
        config = load_config(args.config)
    except TradingError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    configure_logging(config)

    try:
        if args.list:
            return list_pending(config)
        asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("Interrupted, shut down")
        return 130
    except TradingError as e:
        logger.error(f"FX Trader stopped: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
