"""Unit tests for public IP fetchers and the caching PublicIPResolver."""

import threading
from unittest.mock import MagicMock, patch

import pytest
import requests
from mock_providers import FakeClock, MockFetcher

from dns_syncer.errors import ResolutionError
from dns_syncer.fetchers import HttpFetcher, PublicIPResolver, parse_ip_response


def make_resolver(fetcher: MockFetcher, alive: int = 10, clock: FakeClock | None = None):
    return PublicIPResolver(
        fetchers={fetcher.name: fetcher},
        alive={fetcher.name: alive},
        clock=clock or FakeClock(),
    )


class TestResolverCache:
    """Tests for cache freshness driven by 'alive'."""

    def test_second_resolution_within_alive_uses_cache(self) -> None:
        """alive: 10, two resolutions 3 seconds apart: one network fetch."""
        clock = FakeClock()
        fetcher = MockFetcher("f1", value="203.0.113.7")
        resolver = make_resolver(fetcher, alive=10, clock=clock)

        assert resolver.resolve("f1") == "203.0.113.7"
        clock.advance(3)
        assert resolver.resolve("f1") == "203.0.113.7"

        assert fetcher.calls == 1

    def test_stale_cache_triggers_refetch(self) -> None:
        clock = FakeClock()
        fetcher = MockFetcher("f1", value="203.0.113.7")
        resolver = make_resolver(fetcher, alive=10, clock=clock)

        resolver.resolve("f1")
        clock.advance(10)
        fetcher.value = "203.0.113.8"

        assert resolver.resolve("f1") == "203.0.113.8"
        assert fetcher.calls == 2

    def test_families_are_cached_separately(self) -> None:
        fetcher = MockFetcher("f1", value="203.0.113.7")
        resolver = make_resolver(fetcher)

        resolver.resolve("f1", "ipv4")
        resolver.resolve("f1", "ipv6")

        assert fetcher.calls == 2


class TestResolverFailures:
    """Tests for degraded mode and resolution errors."""

    def test_unreachable_fetcher_without_cache_raises(self) -> None:
        fetcher = MockFetcher("f1", value=None)
        resolver = make_resolver(fetcher)

        with pytest.raises(ResolutionError):
            resolver.resolve("f1")

        status = resolver.status("f1")
        assert status.healthy is False
        assert status.consecutive_failures == 1

    def test_unreachable_fetcher_falls_back_to_last_good_value(self) -> None:
        clock = FakeClock()
        fetcher = MockFetcher("f1", value="203.0.113.7")
        resolver = make_resolver(fetcher, alive=10, clock=clock)
        resolver.resolve("f1")

        clock.advance(60)
        fetcher.value = None

        assert resolver.resolve("f1") == "203.0.113.7"
        assert resolver.status("f1").consecutive_failures == 1

    def test_recovery_resets_failure_count(self) -> None:
        clock = FakeClock()
        fetcher = MockFetcher("f1", value=None)
        resolver = make_resolver(fetcher, alive=0, clock=clock)
        with pytest.raises(ResolutionError):
            resolver.resolve("f1")

        fetcher.value = "203.0.113.9"

        assert resolver.resolve("f1") == "203.0.113.9"
        assert resolver.status("f1").healthy is True

    def test_unhealthy_lists_only_failing_families(self) -> None:
        fetcher = MockFetcher("f1", value="203.0.113.7")
        resolver = make_resolver(fetcher, alive=0)
        resolver.resolve("f1", "ipv4")
        fetcher.value = None
        with pytest.raises(ResolutionError):
            resolver.resolve("f1", "ipv6")

        unhealthy = resolver.unhealthy()

        assert list(unhealthy) == ["f1/ipv6"]
        assert unhealthy["f1/ipv6"].consecutive_failures == 1
        assert "unreachable" in unhealthy["f1/ipv6"].last_error

    def test_unknown_fetcher_raises(self) -> None:
        resolver = make_resolver(MockFetcher("f1"))

        with pytest.raises(ResolutionError):
            resolver.resolve("missing")


class TestResolverConcurrency:
    """Tests for collapsing concurrent lookups onto a single fetch."""

    def test_concurrent_resolutions_share_one_fetch(self) -> None:
        fetcher = MockFetcher("f1", value="203.0.113.7", delay=0.2)
        resolver = make_resolver(fetcher)
        results = []
        lock = threading.Lock()

        def worker() -> None:
            value = resolver.resolve("f1")
            with lock:
                results.append(value)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results == ["203.0.113.7"] * 8
        assert fetcher.calls == 1

    def test_waiters_see_failure_of_in_flight_fetch(self) -> None:
        fetcher = MockFetcher("f1", value=None, delay=0.5)
        resolver = make_resolver(fetcher)
        errors = []

        def worker() -> None:
            try:
                resolver.resolve("f1")
            except ResolutionError as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(errors) == 4
        assert fetcher.calls == 1


class TestHttpFetcher:
    """Tests for HttpFetcher and response parsing."""

    def test_parse_bare_ipv4(self) -> None:
        assert parse_ip_response("155.156.157.158\n") == "155.156.157.158"

    def test_parse_cloudflare_trace(self) -> None:
        body = "fl=490f68\nh=1.1.1.1\nip=155.156.157.158\nts=1743642238.374\nloc=AU\n"
        assert parse_ip_response(body) == "155.156.157.158"

    def test_parse_cloudflare_trace_ipv6(self) -> None:
        body = "fl=465f162\nh=[2606:4700:4700::1111]\nip=2604:5006:8:1d0::4b:d000\nloc=US\n"
        assert parse_ip_response(body, "ipv6") == "2604:5006:8:1d0::4b:d000"

    def test_parse_rejects_garbage(self) -> None:
        with pytest.raises(ResolutionError):
            parse_ip_response("<html>rate limited</html>")

    def test_parse_rejects_wrong_family(self) -> None:
        with pytest.raises(ResolutionError):
            parse_ip_response("203.0.113.7", "ipv6")

    def test_fetch_uses_configured_url(self) -> None:
        fetcher = HttpFetcher("f1", url_v4="http://ip.local", timeout=3)

        with patch.object(fetcher._session, "get") as mock_get:
            mock_response = MagicMock()
            mock_response.raise_for_status = MagicMock()
            mock_response.text = "198.51.100.4"
            mock_get.return_value = mock_response

            assert fetcher.fetch("ipv4") == "198.51.100.4"
            mock_get.assert_called_once_with("http://ip.local", timeout=3)

    def test_fetch_defaults_to_cloudflare_trace(self) -> None:
        fetcher = HttpFetcher("f1", timeout=3)
        body = "fl=465f162\nh=[2606:4700:4700::1111]\nip=2604:5006:8:1d0::4b:d000\nloc=US\n"

        with patch.object(fetcher._session, "get") as mock_get:
            mock_response = MagicMock()
            mock_response.raise_for_status = MagicMock()
            mock_response.text = body
            mock_get.return_value = mock_response

            assert fetcher.fetch("ipv6") == "2604:5006:8:1d0::4b:d000"
            mock_get.assert_called_once_with("https://[2606:4700:4700::1111]/cdn-cgi/trace", timeout=3)

    def test_fetch_network_error_raises_resolution_error(self) -> None:
        fetcher = HttpFetcher("f1")

        with patch.object(fetcher._session, "get") as mock_get:
            mock_get.side_effect = requests.exceptions.ConnectionError("Connection refused")

            with pytest.raises(ResolutionError):
                fetcher.fetch("ipv4")
