import argparse

from aiusage.config import Config


def parse_args(argv: "list[str] | None" = None) -> "Config":
    parser = argparse.ArgumentParser(
        prog="aiusage",
        description="AI provider usage tracker and Prometheus exporter",
    )
    parser.add_argument(
        "--web.listen-address",
        dest="listen_address",
        default=":9185",
        help="Address to listen on (default: :9185)",
    )
    parser.add_argument(
        "--refresh.interval",
        dest="refresh_interval",
        type=int,
        default=None,
        help="Refresh interval in seconds (default: the saved preference, 300)",
    )
    parser.add_argument(
        "--provider.timeout",
        dest="provider_timeout",
        type=float,
        default=10.0,
        help="Per-provider fetch timeout in seconds (default: 10)",
    )
    parser.add_argument(
        "--cache.ttl",
        dest="cache_ttl",
        type=float,
        default=120.0,
        help="Seconds a fetched result is reused (default: 120)",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--config.path",
        dest="config_path",
        default=None,
        help="Provider config file (default: $AIUSAGE_CONFIG_PATH or "
        "~/.config/aiusage/config.json)",
    )

    args = parser.parse_args(argv)
    config = Config.from_env()
    config.listen_address = args.listen_address
    config.refresh_interval = args.refresh_interval
    config.provider_timeout = args.provider_timeout
    config.cache_ttl = args.cache_ttl
    config.log_level = args.log_level
    if args.config_path:
        config.config_path = args.config_path
    return config
