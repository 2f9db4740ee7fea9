"""Public IP discovery.

Fetchers ask an external IP-echo service for the caller's public address. The
PublicIPResolver caches each fetcher's answer for its configured ``alive``
seconds, collapses concurrent lookups into a single request, and falls back to
the last known good value when the service is unreachable.
"""

from __future__ import annotations

import ipaddress
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Tuple, Type

import requests

from .errors import ResolutionError
from .models import FetcherConfig

logger = logging.getLogger(__name__)

IPV4 = "ipv4"
IPV6 = "ipv6"

# =============================================================================
# Fetcher Interface and Implementations
# =============================================================================


class IPFetcher(ABC):
    """Abstract base class for public IP sources."""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    def fetch(self, family: str = IPV4) -> str:
        """Return the current public address for the family.

        Raises:
            ResolutionError: If the address cannot be obtained
        """
        pass


class HttpFetcher(IPFetcher):
    """Plain HTTP GET against an IP-echo endpoint.

    The body is either a bare address or a Cloudflare ``/cdn-cgi/trace``
    listing, in which case the ``ip=`` line is used.
    """

    DEFAULT_URLS = {
        IPV4: "https://1.1.1.1/cdn-cgi/trace",
        IPV6: "https://[2606:4700:4700::1111]/cdn-cgi/trace",
    }

    def __init__(self, name: str, url_v4: str = "", url_v6: str = "", timeout: float = 10.0):
        self._name = name
        self._urls = {
            IPV4: url_v4 or self.DEFAULT_URLS[IPV4],
            IPV6: url_v6 or self.DEFAULT_URLS[IPV6],
        }
        self._timeout = timeout
        self._session = requests.Session()

    @classmethod
    def from_config(cls, config: FetcherConfig, timeout: float) -> "HttpFetcher":
        return cls(config.name, url_v4=config.url_v4, url_v6=config.url_v6, timeout=timeout)

    @property
    def name(self) -> str:
        return self._name

    def fetch(self, family: str = IPV4) -> str:
        url = self._urls.get(family)
        if url is None:
            raise ResolutionError(f"Fetcher '{self._name}': unknown address family '{family}'")
        try:
            response = self._session.get(url, timeout=self._timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise ResolutionError(f"Fetcher '{self._name}': GET {url} failed: {e}") from e
        return parse_ip_response(response.text, family)


def parse_ip_response(body: str, family: str = IPV4) -> str:
    """Extract and validate an IP address from an IP-echo response body."""
    text = (body or "").strip()
    for line in text.splitlines():
        line = line.strip()
        if line.startswith("ip="):
            text = line.split("=", 1)[1].strip()
            break

    try:
        address = ipaddress.ip_address(text)
    except ValueError:
        raise ResolutionError(f"Response is not an IP address: {text[:60]!r}") from None

    expected = 6 if family == IPV6 else 4
    if address.version != expected:
        raise ResolutionError(f"Expected an IPv{expected} address, got {address}")
    return str(address)


FETCHER_TYPES: Dict[str, Type[HttpFetcher]] = {
    "http_fetcher": HttpFetcher,
}


def create_fetcher(config: FetcherConfig, timeout: float = 10.0) -> IPFetcher:
    """Factory function to create the configured fetcher."""
    fetcher_cls = FETCHER_TYPES.get(config.type)
    if fetcher_cls is None:
        raise ValueError(f"Unsupported fetcher type: '{config.type}'")
    return fetcher_cls.from_config(config, timeout)


# =============================================================================
# Resolver
# =============================================================================


@dataclass(frozen=True)
class FetcherStatus:
    """Liveness snapshot of one fetcher."""

    last_value: Optional[str]
    last_success: Optional[float]
    last_error: str
    consecutive_failures: int

    @property
    def healthy(self) -> bool:
        return self.consecutive_failures == 0


class _CacheEntry:
    def __init__(self) -> None:
        self.value: Optional[str] = None
        self.fetched_at = 0.0
        self.in_flight: Optional[threading.Event] = None
        self.last_error = ""
        self.consecutive_failures = 0


class PublicIPResolver:
    """Cached, collapsing front for the configured fetchers."""

    def __init__(
        self,
        fetchers: Dict[str, IPFetcher],
        alive: Dict[str, int],
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetchers = fetchers
        self._alive = alive
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[str, str], _CacheEntry] = {}

    @classmethod
    def from_config(
        cls, configs: Iterable[FetcherConfig], timeout: float = 10.0
    ) -> "PublicIPResolver":
        configs = list(configs)
        return cls(
            fetchers={c.name: create_fetcher(c, timeout) for c in configs},
            alive={c.name: c.alive for c in configs},
        )

    def has_fetcher(self, name: str) -> bool:
        return name in self._fetchers

    def resolve(self, fetcher_name: str, family: str = IPV4) -> str:
        """Return the public address, fetching only when the cache is stale.

        Raises:
            ResolutionError: If the fetcher is unknown, or the fetch failed and
                no previous value exists
        """
        fetcher = self._fetchers.get(fetcher_name)
        if fetcher is None:
            raise ResolutionError(f"Unknown fetcher '{fetcher_name}'")
        key = (fetcher_name, family)
        alive = self._alive.get(fetcher_name, 0)

        with self._lock:
            entry = self._entries.setdefault(key, _CacheEntry())
            if entry.value is not None and self._clock() - entry.fetched_at < alive:
                return entry.value
            event = entry.in_flight
            if event is None:
                event = entry.in_flight = threading.Event()
                owner = True
            else:
                owner = False

        if not owner:
            logger.debug(f"Waiting for in-flight fetch on '{fetcher_name}' ({family})")
            event.wait()
            return self._settled_value(entry, fetcher_name, family)

        try:
            value = fetcher.fetch(family)
        except ResolutionError as e:
            with self._lock:
                entry.last_error = str(e)
                entry.consecutive_failures += 1
        else:
            with self._lock:
                entry.value = value
                entry.fetched_at = self._clock()
                entry.last_error = ""
                entry.consecutive_failures = 0
            logger.debug(f"Fetcher '{fetcher_name}' reports {family} address {value}")
        finally:
            with self._lock:
                entry.in_flight = None
            event.set()

        return self._settled_value(entry, fetcher_name, family)

    def status(self, fetcher_name: str, family: str = IPV4) -> FetcherStatus:
        with self._lock:
            entry = self._entries.get((fetcher_name, family)) or _CacheEntry()
            return FetcherStatus(
                last_value=entry.value,
                last_success=entry.fetched_at if entry.value is not None else None,
                last_error=entry.last_error,
                consecutive_failures=entry.consecutive_failures,
            )

    def unhealthy(self) -> Dict[str, FetcherStatus]:
        """Statuses of every (fetcher, family) whose last fetch failed, keyed "name/family"."""
        with self._lock:
            keys = [key for key, entry in self._entries.items() if entry.consecutive_failures]
        return {f"{name}/{family}": self.status(name, family) for name, family in sorted(keys)}

    def _settled_value(self, entry: _CacheEntry, fetcher_name: str, family: str) -> str:
        with self._lock:
            value, error = entry.value, entry.last_error
        if not error and value is not None:
            return value
        if value is not None:
            logger.warning(
                f"Fetcher '{fetcher_name}' unavailable ({error}); using last known {family} address {value}"
            )
            return value
        raise ResolutionError(
            f"No {family} address available from fetcher '{fetcher_name}': {error or 'fetch aborted'}"
        )
