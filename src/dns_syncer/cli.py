#!/usr/bin/env python3
"""dns-syncer - Declarative DNS Record Synchronization

Keeps DNS records at one or more hosting providers in line with a YAML file.
Every cycle the desired records are expanded per provider and zone, records
without explicit content get the machine's public IP, and the live records at
each provider are created, updated or deleted to match.

Supported DNS Providers:
    - cloudflare: Cloudflare API v4 (api_token or api_key authentication)
    - adguard:    AdGuard Home DNS rewrites (optional basic authentication)

Supported Public IP Fetchers:
    - http_fetcher: Cloudflare /cdn-cgi/trace by default, or any plain-text IP-echo endpoint

Usage:
    dns-syncer --config /config/dns-syncer.yaml

Environment variables:

    DNS_SYNCER_CONFIG      Config file path used when --config is not given
                           (default: /config/dns-syncer.yaml)
    LOG_LEVEL              DEBUG, INFO, WARNING, ERROR (default: INFO)

Config file:

    check_interval: 30               # seconds; 0 = run once and exit
    records:
      - type: A
        name: home
        op: create                   # create | update | delete | purge
        backends:
          - provider: cloudflare-1
            params:
              - name: proxied
                value: "true"
            zones:
              - example.org
    providers:
      - name: cloudflare-1
        type: cloudflare
        authentication:
          type: api_token
          value: <token>
    fetchers:
      - name: http_fetcher-1
        type: http_fetcher
        alive: 10
    public_ip_fecher: http_fetcher-1

Exit status:
    Run once: 0 when every target converged, 1 otherwise.
    Watch:    1 only when stopped while fatal errors (bad config references,
              rejected credentials, permanent API errors) are unresolved.
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
from typing import List, Optional

from . import __version__
from .config import load_config
from .engine import ReconciliationEngine
from .errors import ConfigError
from .fetchers import PublicIPResolver
from .models import SyncConfig
from .providers import create_dns_providers
from .resolver import DesiredStateResolver
from .scheduler import Scheduler

# =============================================================================
# Configuration
# =============================================================================

DNS_SYNCER_CONFIG = os.getenv("DNS_SYNCER_CONFIG", "/config/dns-syncer.yaml")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# =============================================================================
# Logging Setup
# =============================================================================

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# =============================================================================
# Main
# =============================================================================


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="dns-syncer", description="Synchronize DNS records with a declarative config."
    )
    parser.add_argument(
        "-c",
        "--config",
        default=DNS_SYNCER_CONFIG,
        help=f"path to the YAML config file (default: {DNS_SYNCER_CONFIG})",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def build_scheduler(config: SyncConfig, stop_event: Optional[threading.Event] = None) -> Scheduler:
    """Wire providers, fetchers, resolver and engine for a loaded config."""
    providers = create_dns_providers(config.providers, config.http_timeout)
    ip_resolver = PublicIPResolver.from_config(config.fetchers, config.http_timeout)
    resolver = DesiredStateResolver(ip_resolver, config.public_ip_fetcher)
    engine = ReconciliationEngine(providers, max_workers=config.max_workers)
    return Scheduler(config, resolver, engine, stop_event=stop_event)


def log_startup(config: SyncConfig) -> None:
    logger.info(f"Providers: {', '.join(f'{p.name} ({p.type})' for p in config.providers) or 'none'}")
    logger.info(f"Records: {len(config.records)}")
    if config.public_ip_fetcher:
        logger.info(f"Public IP fetcher: {config.public_ip_fetcher}")
    if config.check_interval == 0:
        logger.info("Sync mode: once")
    else:
        logger.info(f"Sync mode: watch (every {config.check_interval}s, {config.max_workers} workers)")


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    logger.info(f"dns-syncer {__version__}: {args.config}")

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error(f"Configuration validation failed: {e}")
        sys.exit(1)

    log_startup(config)
    scheduler = build_scheduler(config)

    def handle_signal(signum: int, frame: object) -> None:
        logger.info(f"Received signal {signum}, stopping after the current cycle...")
        scheduler.stop()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    try:
        status = scheduler.run()
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    sys.exit(status)


if __name__ == "__main__":
    main()
