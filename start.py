"""
NFT Dashboard Backend - Entry Point
Serves cached, period-filtered game datasets over HTTP.
"""
import argparse
import asyncio
import sys

from nft_dashboard.app import DashboardApp, StartupError
from nft_dashboard.config.loader import config
from nft_dashboard.logger.logger import Logger
from nft_dashboard.utils.graceful_shutdown_manager import GracefulShutdownManager


def parse_args():
    parser = argparse.ArgumentParser(
        description="NFT Dashboard Backend - cached game data API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python start.py                  # Host and port from config.ini
  python start.py --port 8080      # Override the port
  python start.py --no-scheduler   # Serve without the periodic refresh
        """
    )
    parser.add_argument("--host", default=None, help="Bind address. Default: from config")
    parser.add_argument("--port", type=int, default=None, help="Port. Default: from config")
    parser.add_argument("--no-scheduler", action="store_true", help="Disable scheduled dataset refresh")
    return parser.parse_args()


class _CliConfig:
    """Config view with command-line overrides on top of config.ini."""

    def __init__(self, base, host=None, port=None, scheduler_enabled=None):
        self._base = base
        self._overrides = {"HOST": host, "PORT": port, "SCHEDULER_ENABLED": scheduler_enabled}

    def __getattr__(self, name):
        override = self._overrides.get(name)
        if override is not None:
            return override
        return getattr(self._base, name)


async def main_async() -> int:
    args = parse_args()
    logger = Logger(logger_name="Dashboard", logger_debug=config.LOGGER_DEBUG)
    app_config = _CliConfig(config, args.host, args.port, False if args.no_scheduler else None)
    app = DashboardApp(logger, app_config)

    try:
        await app.initialize()
        await app.run()
    except StartupError as e:
        logger.critical(f"Startup failed: {e}")
        return 1
    except asyncio.CancelledError:
        logger.info("Dashboard cancelled, shutting down...")
    finally:
        await app.shutdown()
    return 0


def main() -> None:
    if sys.platform == 'win32':
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    shutdown_manager = GracefulShutdownManager(loop)
    shutdown_manager.setup_signal_handlers()

    exit_code = 0
    try:
        exit_code = loop.run_until_complete(main_async())
    except KeyboardInterrupt:
        print("\nKeyboardInterrupt received - initiating graceful shutdown...")
        loop.run_until_complete(shutdown_manager.shutdown_gracefully())
    except asyncio.CancelledError:
        pass
    finally:
        loop.close()
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
