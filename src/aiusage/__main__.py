import asyncio
import signal

import structlog
from prometheus_client import start_http_server

from aiusage.cli import parse_args
from aiusage.logging import setup_logging
from aiusage.metrics import MetricsUpdater
from aiusage.tracker import UsageTracker

logger = structlog.get_logger()


def _parse_listen_address(addr: "str") -> "tuple[str, int]":
    """
    parses listen address in format ':9185' or '0.0.0.0:9185'.
    """
    if addr.startswith(":"):
        return ("0.0.0.0", int(addr[1:]))

    host, port = addr.rsplit(":", 1)
    return (host, int(port))


def main() -> "None":
    config = parse_args()
    setup_logging(config.log_level)

    host, port = _parse_listen_address(config.listen_address)
    start_http_server(port, addr=host)
    logger.info("metrics_server_started", host=host, port=port)

    async def _run() -> "None":
        tracker = UsageTracker.from_config(config, metrics=MetricsUpdater())
        logger.info(
            "tracker_started",
            config_path=config.expanded_config_path,
            authenticated=tracker.is_authenticated(),
        )

        loop = asyncio.get_running_loop()
        # for SIGINT and SIGTERM, signal the refresh loop
        # to stop gracefully
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, tracker.aggregator.stop)

        try:
            await tracker.aggregator.run(
                tracker.refresh_interval(config.refresh_interval)
            )
        finally:
            logger.info("shutting_down")
            await tracker.close()
            logger.info("shutdown_complete")

    asyncio.run(_run())


if __name__ == "__main__":
    main()
