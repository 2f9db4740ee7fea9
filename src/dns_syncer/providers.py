"""DNS provider adapters.

Each adapter wraps one DNS hosting provider's management API behind the
DNSProvider interface and translates HTTP failures into the error taxonomy in
dns_syncer.errors:

    - timeouts, connection errors, 429 and 5xx  -> TransientError
    - 401 / 403                                 -> AuthError
    - 404 / unknown zone                        -> NotFoundError
    - any other rejection                       -> PermanentError

Supported providers:
    - cloudflare: Cloudflare REST API v4 (api_token or api_key authentication)
    - adguard:    AdGuard Home DNS rewrites (optional basic authentication)
"""

from __future__ import annotations

import ipaddress
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple, Type

import requests
from requests.auth import HTTPBasicAuth

from .errors import AuthError, NotFoundError, PermanentError, TransientError
from .models import (
    TTL_AUTO,
    ApiKey,
    ApiToken,
    Authentication,
    BasicAuth,
    LiveRecord,
    ProviderConfig,
    RecordType,
    ResolvedTarget,
    parse_bool,
)

logger = logging.getLogger(__name__)

# =============================================================================
# HTTP Helpers
# =============================================================================


def send_request(
    session: requests.Session,
    method: str,
    url: str,
    *,
    timeout: float,
    what: str,
    **kwargs: Any,
) -> requests.Response:
    """Issue an HTTP request and classify any failure.

    Args:
        session: Session carrying the provider's authentication
        method: HTTP method
        url: Absolute URL
        timeout: Per-request timeout in seconds
        what: Short description of the operation, used in error messages

    Returns:
        The response, guaranteed to have a 2xx/3xx status

    Raises:
        TransientError, AuthError, NotFoundError, PermanentError
    """
    try:
        response = session.request(method, url, timeout=timeout, **kwargs)
    except requests.exceptions.Timeout as e:
        raise TransientError(f"{what}: timed out after {timeout}s") from e
    except requests.exceptions.RequestException as e:
        raise TransientError(f"{what}: {e}") from e

    status = response.status_code
    if status < 400:
        return response

    reason = _error_text(response)
    if status in (401, 403):
        raise AuthError(f"{what}: HTTP {status} {reason}")
    if status == 404:
        raise NotFoundError(f"{what}: HTTP 404 {reason}")
    if status == 429 or status >= 500:
        raise TransientError(f"{what}: HTTP {status} {reason}")
    raise PermanentError(f"{what}: HTTP {status} {reason}")


def _error_text(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return (response.text or "").strip()[:200]
    if isinstance(payload, dict) and payload.get("errors"):
        return _format_cf_errors(payload["errors"])
    return str(payload)[:200]


def _format_cf_errors(errors: Any) -> str:
    if not isinstance(errors, list):
        return str(errors)
    parts = []
    for err in errors:
        if isinstance(err, dict):
            parts.append(f"[{err.get('code', '?')}] {err.get('message', '')}".strip())
        else:
            parts.append(str(err))
    return "; ".join(parts)


# =============================================================================
# DNS Provider Interface
# =============================================================================


class DNSProvider(ABC):
    """Abstract base class for DNS providers."""

    SUPPORTED_TYPES: Tuple[RecordType, ...] = tuple(RecordType)
    SUPPORTED_PARAMS: Tuple[str, ...] = ()
    SUPPORTED_AUTH: Tuple[str, ...] = ()
    REQUIRES_AUTH = True
    REQUIRES_URL = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the configured provider name for logging."""
        pass

    @classmethod
    @abstractmethod
    def from_config(cls, config: ProviderConfig, timeout: float) -> "DNSProvider":
        """Build the adapter from its configuration entry."""
        pass

    @abstractmethod
    def authenticate(self) -> None:
        """Validate credentials against the remote API.

        Raises:
            AuthError: If the credentials are rejected
        """
        pass

    @abstractmethod
    def list_records(
        self,
        zone: str,
        record_type: Optional[RecordType] = None,
        name: Optional[str] = None,
    ) -> List[LiveRecord]:
        """List live records in a zone, optionally filtered by type and FQDN."""
        pass

    @abstractmethod
    def create_record(self, zone: str, target: ResolvedTarget) -> None:
        """Create a record carrying the target's content."""
        pass

    @abstractmethod
    def update_record(self, zone: str, record_id: str, target: ResolvedTarget) -> None:
        """Overwrite an existing record with the target's content."""
        pass

    @abstractmethod
    def delete_record(self, zone: str, record_id: str) -> None:
        """Delete a record by its provider id."""
        pass

    def record_drifted(self, live: LiveRecord, target: ResolvedTarget) -> bool:
        """Whether a record with matching content still differs in provider-specific settings."""
        return False


# =============================================================================
# Cloudflare
# =============================================================================


def _cloudflare_headers(authentication: Authentication) -> Dict[str, str]:
    if isinstance(authentication, ApiToken):
        return {"Authorization": f"Bearer {authentication.value}"}
    if isinstance(authentication, ApiKey):
        return {"X-Auth-Email": authentication.email, "X-Auth-Key": authentication.key}
    raise ValueError(f"Cloudflare does not support {type(authentication).__name__}")


class CloudflareDNSProvider(DNSProvider):
    """Cloudflare DNS provider implementation (REST API v4)."""

    API_URL = "https://api.cloudflare.com/client/v4"
    PAGE_SIZE = 100
    PROXIABLE_TYPES = (RecordType.A, RecordType.AAAA, RecordType.CNAME)

    SUPPORTED_PARAMS = ("proxied", "priority")
    SUPPORTED_AUTH = ("api_token", "api_key")

    def __init__(
        self,
        name: str,
        authentication: Authentication,
        url: str = "",
        timeout: float = 10.0,
    ):
        self._name = name
        self._authentication = authentication
        self._url = (url or self.API_URL).rstrip("/")
        self._timeout = timeout
        self._session = requests.Session()
        self._session.headers.update(_cloudflare_headers(authentication))
        self._session.headers["Content-Type"] = "application/json"
        self._zone_ids: Dict[str, str] = {}
        self._zone_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: ProviderConfig, timeout: float) -> "CloudflareDNSProvider":
        return cls(config.name, config.authentication, url=config.url, timeout=timeout)

    @property
    def name(self) -> str:
        return self._name

    def authenticate(self) -> None:
        try:
            if isinstance(self._authentication, ApiToken):
                self._call("GET", "/user/tokens/verify", what="verify API token")
            else:
                self._call("GET", "/user", what="verify API key")
        except PermanentError as e:
            # Malformed credentials come back as 400, not 401/403.
            raise AuthError(str(e)) from e
        # Zone ids are re-looked-up once per cycle.
        with self._zone_lock:
            self._zone_ids.clear()
        logger.debug(f"Cloudflare '{self._name}' credentials accepted")

    def zone_id(self, zone: str) -> str:
        """Map a zone name to its Cloudflare zone id."""
        with self._zone_lock:
            cached = self._zone_ids.get(zone)
        if cached:
            return cached

        payload = self._call("GET", "/zones", what=f"look up zone {zone}", params={"name": zone})
        zones = payload.get("result") or []
        if not zones:
            raise NotFoundError(f"Zone '{zone}' not found in Cloudflare account '{self._name}'")
        if len(zones) > 1:
            raise PermanentError(f"Multiple Cloudflare zones named '{zone}'")

        zone_id = str(zones[0]["id"])
        with self._zone_lock:
            self._zone_ids[zone] = zone_id
        return zone_id

    def list_records(
        self,
        zone: str,
        record_type: Optional[RecordType] = None,
        name: Optional[str] = None,
    ) -> List[LiveRecord]:
        zone_id = self.zone_id(zone)
        params: Dict[str, Any] = {"per_page": self.PAGE_SIZE}
        if record_type is not None:
            params["type"] = record_type.value
        if name:
            params["name"] = name

        records: List[LiveRecord] = []
        page = 1
        while True:
            params["page"] = page
            payload = self._call(
                "GET", f"/zones/{zone_id}/dns_records", what=f"list records in {zone}", params=params
            )
            for item in payload.get("result") or []:
                record = self._parse_record(item)
                if record is not None:
                    records.append(record)

            total_pages = (payload.get("result_info") or {}).get("total_pages") or 1
            if page >= total_pages:
                return records
            page += 1

    def create_record(self, zone: str, target: ResolvedTarget) -> None:
        zone_id = self.zone_id(zone)
        self._call(
            "POST",
            f"/zones/{zone_id}/dns_records",
            what=f"create {target.type.value} {target.fqdn}",
            json=self._record_body(target),
        )
        logger.info(f"Created {target.type.value} {target.fqdn} -> {target.content} in {zone}")

    def update_record(self, zone: str, record_id: str, target: ResolvedTarget) -> None:
        zone_id = self.zone_id(zone)
        self._call(
            "PUT",
            f"/zones/{zone_id}/dns_records/{record_id}",
            what=f"update {target.type.value} {target.fqdn}",
            json=self._record_body(target),
        )
        logger.info(f"Updated {target.type.value} {target.fqdn} -> {target.content} in {zone}")

    def delete_record(self, zone: str, record_id: str) -> None:
        zone_id = self.zone_id(zone)
        try:
            self._call(
                "DELETE",
                f"/zones/{zone_id}/dns_records/{record_id}",
                what=f"delete record {record_id}",
            )
        except NotFoundError:
            logger.debug(f"Record {record_id} already gone from {zone}")
            return
        logger.info(f"Deleted record {record_id} from {zone}")

    def record_drifted(self, live: LiveRecord, target: ResolvedTarget) -> bool:
        params = target.params_dict()
        # proxied is only sent for proxiable types, so it can only drift there.
        if "proxied" in params and target.type in self.PROXIABLE_TYPES and live.proxied is not None:
            if parse_bool(params["proxied"], default=False) != live.proxied:
                return True
        if "priority" in params and self._priority(target) != live.priority:
            return True
        # Proxied records always report automatic TTL.
        if not live.proxied and target.ttl != live.ttl:
            return True
        return False

    def _call(self, method: str, path: str, *, what: str, **kwargs: Any) -> Dict[str, Any]:
        response = send_request(
            self._session,
            method,
            f"{self._url}{path}",
            timeout=self._timeout,
            what=f"Cloudflare '{self._name}': {what}",
            **kwargs,
        )
        try:
            payload = response.json()
        except ValueError as e:
            raise PermanentError(f"Cloudflare '{self._name}': {what}: invalid JSON response") from e
        if not isinstance(payload, dict) or not payload.get("success", False):
            errors = payload.get("errors") if isinstance(payload, dict) else payload
            raise PermanentError(
                f"Cloudflare '{self._name}': {what}: {_format_cf_errors(errors)}"
            )
        return payload

    def _record_body(self, target: ResolvedTarget) -> Dict[str, Any]:
        params = target.params_dict()
        body: Dict[str, Any] = {
            "type": target.type.value,
            "name": target.fqdn,
            "content": target.content,
            "ttl": target.ttl,
        }
        if target.comment:
            body["comment"] = target.comment
        if "proxied" in params and target.type in self.PROXIABLE_TYPES:
            body["proxied"] = parse_bool(params["proxied"], default=False)
        if "priority" in params:
            body["priority"] = self._priority(target)
        return body

    @staticmethod
    def _priority(target: ResolvedTarget) -> int:
        value = target.params_dict()["priority"]
        try:
            return int(value)
        except ValueError:
            raise PermanentError(f"Invalid priority '{value}' for {target.fqdn}") from None

    def _parse_record(self, item: Any) -> Optional[LiveRecord]:
        if not isinstance(item, dict):
            logger.warning(f"Skipping malformed record: {item}")
            return None
        try:
            record_type = RecordType(str(item.get("type")))
        except ValueError:
            logger.debug(f"Skipping unmanaged record type: {item.get('type')} {item.get('name')}")
            return None
        return LiveRecord(
            id=str(item.get("id") or ""),
            type=record_type,
            name=str(item.get("name") or ""),
            content=str(item.get("content") or ""),
            ttl=int(item.get("ttl") or TTL_AUTO),
            proxied=item.get("proxied"),
            comment=str(item.get("comment") or ""),
            priority=item.get("priority"),
        )


# =============================================================================
# AdGuard Home
# =============================================================================


class AdGuardDNSProvider(DNSProvider):
    """AdGuard Home DNS rewrites.

    Rewrites are plain (domain, answer) pairs with no id, so the record id used
    by the engine is "domain answer". Zones only qualify record names.
    """

    SUPPORTED_TYPES = (RecordType.A, RecordType.AAAA, RecordType.CNAME)
    SUPPORTED_AUTH = ("basic",)
    REQUIRES_AUTH = False
    REQUIRES_URL = True

    def __init__(
        self,
        name: str,
        url: str,
        authentication: Optional[BasicAuth] = None,
        timeout: float = 5.0,
    ):
        self._name = name
        self._url = url.rstrip("/")
        self._timeout = timeout
        self._session = requests.Session()
        if authentication is not None:
            self._session.auth = HTTPBasicAuth(authentication.username, authentication.password)

    @classmethod
    def from_config(cls, config: ProviderConfig, timeout: float) -> "AdGuardDNSProvider":
        return cls(config.name, config.url, authentication=config.authentication, timeout=timeout)

    @property
    def name(self) -> str:
        return self._name

    def authenticate(self) -> None:
        self._send("GET", "/control/status", what="check status")
        logger.debug(f"AdGuard Home '{self._name}' connection successful")

    def list_records(
        self,
        zone: str,
        record_type: Optional[RecordType] = None,
        name: Optional[str] = None,
    ) -> List[LiveRecord]:
        response = self._send("GET", "/control/rewrite/list", what="list rewrites")
        try:
            data = response.json()
        except ValueError as e:
            raise PermanentError(f"AdGuard Home '{self._name}': invalid JSON rewrite list") from e
        if not isinstance(data, list):
            raise PermanentError(f"AdGuard Home '{self._name}': unexpected rewrite list format")

        records: List[LiveRecord] = []
        for r in data:
            domain = r.get("domain") if isinstance(r, dict) else None
            answer = r.get("answer") if isinstance(r, dict) else None
            if not isinstance(domain, str) or not isinstance(answer, str):
                logger.warning(f"Skipping malformed record: {r}")
                continue
            answer_type = self._answer_type(answer)
            if record_type is not None and answer_type is not record_type:
                continue
            if name and domain.rstrip(".").lower() != name.lower():
                continue
            records.append(
                LiveRecord(id=f"{domain} {answer}", type=answer_type, name=domain, content=answer)
            )
        return records

    def create_record(self, zone: str, target: ResolvedTarget) -> None:
        self._add(target.fqdn, target.content or "")

    def update_record(self, zone: str, record_id: str, target: ResolvedTarget) -> None:
        # Default implementation: delete + add.
        self.delete_record(zone, record_id)
        self._add(target.fqdn, target.content or "")

    def delete_record(self, zone: str, record_id: str) -> None:
        domain, _, answer = record_id.partition(" ")
        data = {"domain": domain, "answer": answer}
        self._send("POST", "/control/rewrite/delete", what=f"delete rewrite {domain}", json=data)
        logger.info(f"Deleted DNS record: {domain} -> {answer}")

    def _add(self, domain: str, answer: str) -> None:
        data = {"domain": domain, "answer": answer}
        self._send("POST", "/control/rewrite/add", what=f"add rewrite {domain}", json=data)
        logger.info(f"Added DNS record: {domain} -> {answer}")

    def _send(self, method: str, path: str, *, what: str, **kwargs: Any) -> requests.Response:
        return send_request(
            self._session,
            method,
            f"{self._url}{path}",
            timeout=self._timeout,
            what=f"AdGuard Home '{self._name}': {what}",
            **kwargs,
        )

    @staticmethod
    def _answer_type(answer: str) -> RecordType:
        try:
            address = ipaddress.ip_address(answer.strip())
        except ValueError:
            return RecordType.CNAME
        return RecordType.AAAA if address.version == 6 else RecordType.A


# =============================================================================
# Provider Registry
# =============================================================================

PROVIDER_TYPES: Dict[str, Type[DNSProvider]] = {
    "cloudflare": CloudflareDNSProvider,
    "adguard": AdGuardDNSProvider,
}


def create_dns_provider(config: ProviderConfig, timeout: float = 10.0) -> DNSProvider:
    """Factory function to create the adapter for a configured provider."""
    provider_cls = PROVIDER_TYPES.get(config.type)
    if provider_cls is None:
        raise ValueError(
            f"Unsupported DNS provider type: '{config.type}'. "
            f"Supported providers: {', '.join(sorted(PROVIDER_TYPES))}"
        )
    return provider_cls.from_config(config, timeout)


def create_dns_providers(configs: Tuple[ProviderConfig, ...], timeout: float) -> Dict[str, DNSProvider]:
    return {config.name: create_dns_provider(config, timeout) for config in configs}
