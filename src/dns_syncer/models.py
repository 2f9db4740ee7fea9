"""Data model shared by the resolver, providers and the reconciliation engine."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

# =============================================================================
# Enums
# =============================================================================


class RecordType(Enum):
    """DNS record types the syncer knows how to manage."""

    A = "A"
    AAAA = "AAAA"
    CNAME = "CNAME"
    TXT = "TXT"
    MX = "MX"
    NS = "NS"
    SRV = "SRV"
    CAA = "CAA"

    @property
    def is_address(self) -> bool:
        return self in (RecordType.A, RecordType.AAAA)

    @property
    def ip_family(self) -> str:
        """Address family used to auto-resolve content for this type."""
        return "ipv6" if self is RecordType.AAAA else "ipv4"


class RecordOp(Enum):
    """Desired reconciliation intent for a record.

    CREATE: ensure a record with this content exists (update a divergent one).
    UPDATE: same convergence as CREATE; an absent record is created.
    DELETE: ensure no matching record exists.
    PURGE:  ensure exactly one record of (type, name) exists, with this content.
    """

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    PURGE = "purge"


class Outcome(Enum):
    NOOP = "no-op"
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    FAILED = "failed"


# TTL value meaning "let the provider decide".
TTL_AUTO = 1

# =============================================================================
# Configuration Data Classes
# =============================================================================


@dataclass(frozen=True)
class Param:
    """Provider-specific name/value pair attached to a backend."""

    name: str
    value: str


@dataclass(frozen=True)
class BackendRef:
    """Where a record should be materialized: one provider, one or more zones."""

    provider: str
    zones: Tuple[str, ...]
    params: Tuple[Param, ...] = ()

    def params_dict(self) -> Dict[str, str]:
        return {p.name: p.value for p in self.params}


@dataclass(frozen=True)
class RecordSpec:
    """A desired DNS record as written in the configuration."""

    type: RecordType
    name: str
    backends: Tuple[BackendRef, ...]
    content: Optional[str] = None
    comment: str = ""
    op: RecordOp = RecordOp.CREATE
    ttl: int = TTL_AUTO

    @property
    def label(self) -> str:
        return f"{self.type.value} {self.name}"


@dataclass(frozen=True)
class ApiToken:
    value: str

    type_name = "api_token"


@dataclass(frozen=True)
class ApiKey:
    email: str
    key: str

    type_name = "api_key"


@dataclass(frozen=True)
class BasicAuth:
    username: str
    password: str

    type_name = "basic"


Authentication = Union[ApiToken, ApiKey, BasicAuth]


@dataclass(frozen=True)
class ProviderConfig:
    """A named DNS hosting account."""

    name: str
    type: str
    authentication: Optional[Authentication] = None
    url: str = ""


@dataclass(frozen=True)
class FetcherConfig:
    """A named public-IP source."""

    name: str
    type: str
    alive: int
    url_v4: str = ""
    url_v6: str = ""


@dataclass(frozen=True)
class SyncConfig:
    """The whole desired state plus runtime knobs, as loaded from YAML."""

    check_interval: int
    records: Tuple[RecordSpec, ...] = ()
    providers: Tuple[ProviderConfig, ...] = ()
    fetchers: Tuple[FetcherConfig, ...] = ()
    public_ip_fetcher: Optional[str] = None
    max_workers: int = 8
    http_timeout: float = 10.0

    def provider(self, name: str) -> Optional[ProviderConfig]:
        for provider in self.providers:
            if provider.name == name:
                return provider
        return None

    def fetcher(self, name: str) -> Optional[FetcherConfig]:
        for fetcher in self.fetchers:
            if fetcher.name == name:
                return fetcher
        return None


# =============================================================================
# Cycle-scoped Data Classes
# =============================================================================


@dataclass(frozen=True)
class ResolvedTarget:
    """One concrete record at one provider/zone, ready to be reconciled."""

    type: RecordType
    name: str
    zone: str
    provider: str
    op: RecordOp
    content: Optional[str] = None
    ttl: int = TTL_AUTO
    comment: str = ""
    params: Tuple[Param, ...] = ()
    error: Optional[Exception] = field(default=None, compare=False)

    @property
    def fqdn(self) -> str:
        """Record name qualified by its zone ("@" means the zone apex)."""
        return qualify_name(self.name, self.zone)

    @property
    def key(self) -> Tuple[str, str, str, str]:
        return (self.type.value, self.fqdn, self.provider, self.zone)

    def params_dict(self) -> Dict[str, str]:
        return {p.name: p.value for p in self.params}

    def __str__(self) -> str:
        return f"{self.type.value} {self.fqdn} @ {self.provider}/{self.zone}"


@dataclass(frozen=True)
class LiveRecord:
    """A record as currently stored by a provider."""

    id: str
    type: RecordType
    name: str
    content: str
    ttl: int = TTL_AUTO
    proxied: Optional[bool] = None
    comment: str = ""
    priority: Optional[int] = None


@dataclass(frozen=True)
class ReconciliationResult:
    """Per-target outcome of one cycle."""

    target: ResolvedTarget
    outcome: Outcome
    error: Optional[Exception] = None
    detail: str = ""

    @property
    def failed(self) -> bool:
        return self.outcome is Outcome.FAILED

    @property
    def error_class(self) -> str:
        return type(self.error).__name__ if self.error is not None else ""


# =============================================================================
# Utility Functions
# =============================================================================


def parse_bool(value: Any, *, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def qualify_name(name: str, zone: str) -> str:
    name = name.strip().rstrip(".").lower()
    zone = zone.strip().rstrip(".").lower()
    if not zone:
        return name
    if name in ("", "@") or name == zone:
        return zone
    if name.endswith(f".{zone}"):
        return name
    return f"{name}.{zone}"


def normalize_content(record_type: RecordType, content: str) -> str:
    """Canonical form of record content, used only for comparison."""
    value = content.strip()
    if record_type.is_address:
        try:
            return str(ipaddress.ip_address(value))
        except ValueError:
            return value.lower()
    if record_type in (RecordType.CNAME, RecordType.NS, RecordType.MX):
        return value.rstrip(".").lower()
    if record_type is RecordType.TXT and len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1]
    return value


def content_matches(record_type: RecordType, left: str, right: str) -> bool:
    return normalize_content(record_type, left) == normalize_content(record_type, right)
