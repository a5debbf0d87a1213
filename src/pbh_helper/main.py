"""Entry point for the PeerBanHelper qBittorrent sidecar."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path
from threading import Event, Thread

from banip_sync import BanIPManager, NftExecutor

from .bootstrap import install_ruleset
from .config import load_config
from .proxy import BanHandlers, ProxyServer
from .ratelimit import TokenBucket

LOG = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the PeerBanHelper qBittorrent helper")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional YAML configuration file; environment variables override it",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    config = load_config(args.config)

    engine = None
    if config.firewall.enabled:
        executor = NftExecutor(config.firewall.nft_binary)
        if config.firewall.bootstrap:
            install_ruleset(executor, config.firewall)
        engine = BanIPManager(config.firewall.set_binding(), executor)
    else:
        LOG.warning("nftables integration disabled; bans are forwarded to qBittorrent")

    handlers = BanHandlers(engine, peer_filter_window=config.proxy.peer_filter_window)
    bucket = TokenBucket(
        config.rate_limit.capacity,
        config.rate_limit.interval,
        config.rate_limit.refill,
    )
    server = ProxyServer(
        (config.proxy.listen_host, config.proxy.http_port),
        config.proxy,
        handlers,
        bucket,
    )

    stop_event = Event()

    def _shutdown(signum, frame):  # pragma: no cover - signal handler
        LOG.info("received signal %s, shutting down", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    serve_thread = Thread(target=server.serve_forever, name="proxy", daemon=True)
    serve_thread.start()
    LOG.warning("qbt endpoint: %s", config.proxy.qbt_endpoint)
    LOG.warning(
        "pbh-qbt-helper started: http://%s:%d/", *server.server_address[:2]
    )

    try:
        while not stop_event.is_set():
            stop_event.wait(1.0)
    except KeyboardInterrupt:  # pragma: no cover - fallback if signal not set
        stop_event.set()

    server.shutdown()
    server.server_close()
    serve_thread.join()
    if engine is not None:
        engine.close()

    LOG.info("pbh-qbt-helper stopped")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
