"""Configuration loading.

Reads the YAML configuration file into frozen dataclasses. Only structural
problems are reported here (as ConfigError); cross-references between records,
providers and fetchers are checked per cycle by the DesiredStateResolver so a
single bad record never stops the others from syncing.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .errors import ConfigError
from .models import (
    TTL_AUTO,
    ApiKey,
    ApiToken,
    Authentication,
    BackendRef,
    BasicAuth,
    FetcherConfig,
    Param,
    ProviderConfig,
    RecordOp,
    RecordSpec,
    RecordType,
    SyncConfig,
)
from .providers import PROVIDER_TYPES

logger = logging.getLogger(__name__)

FETCHER_TYPES = ("http_fetcher",)

# "public_ip_fecher" is the documented key; the corrected spelling is also accepted.
PUBLIC_IP_FETCHER_KEYS = ("public_ip_fecher", "public_ip_fetcher")


def load_config(config_path: str) -> SyncConfig:
    """Load and structurally validate a configuration file.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        The parsed SyncConfig

    Raises:
        ConfigError: If the file is missing, is not valid YAML, or has an invalid shape
    """
    path = Path(config_path)
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    config = parse_config(data)
    logger.debug(
        f"Loaded {path}: {len(config.records)} record(s), {len(config.providers)} provider(s), "
        f"{len(config.fetchers)} fetcher(s)"
    )
    return config


def parse_config(data: Any) -> SyncConfig:
    """Build a SyncConfig from already-parsed YAML data."""
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping")

    check_interval = _parse_int(data.get("check_interval", 0), "check_interval")
    if check_interval < 0:
        raise ConfigError("check_interval must be a non-negative integer")

    max_workers = _parse_int(data.get("max_workers", 8), "max_workers")
    if max_workers < 1:
        raise ConfigError("max_workers must be at least 1")

    http_timeout = data.get("http_timeout", 10)
    if isinstance(http_timeout, bool) or not isinstance(http_timeout, (int, float)):
        raise ConfigError("http_timeout must be a number of seconds")
    if http_timeout <= 0:
        raise ConfigError("http_timeout must be positive")

    providers = tuple(
        _parse_provider(item, i) for i, item in enumerate(_as_list(data, "providers"))
    )
    _check_unique([p.name for p in providers], "provider")

    fetchers = tuple(_parse_fetcher(item, i) for i, item in enumerate(_as_list(data, "fetchers")))
    _check_unique([f.name for f in fetchers], "fetcher")

    records = tuple(_parse_record(item, i) for i, item in enumerate(_as_list(data, "records")))

    public_ip_fetcher: Optional[str] = None
    for key in PUBLIC_IP_FETCHER_KEYS:
        if data.get(key):
            public_ip_fetcher = str(data[key]).strip()
            break

    return SyncConfig(
        check_interval=check_interval,
        records=records,
        providers=providers,
        fetchers=fetchers,
        public_ip_fetcher=public_ip_fetcher,
        max_workers=max_workers,
        http_timeout=float(http_timeout),
    )


# =============================================================================
# Section Parsers
# =============================================================================


def _parse_record(item: Any, index: int) -> RecordSpec:
    where = f"records[{index}]"
    if not isinstance(item, dict):
        raise ConfigError(f"{where} must be a mapping")

    name = str(item.get("name") or "").strip()
    if not name:
        raise ConfigError(f"{where} is missing 'name'")
    where = f"{where} ({name})"

    record_type = _parse_enum(RecordType, str(item.get("type") or "").strip().upper(), where)
    op = _parse_enum(RecordOp, str(item.get("op") or "create").strip().lower(), where)

    content = item.get("content")
    if content is not None:
        content = str(content).strip() or None

    backends_raw = item.get("backends")
    if not isinstance(backends_raw, list) or not backends_raw:
        raise ConfigError(f"{where} needs a non-empty 'backends' list")

    return RecordSpec(
        type=record_type,
        name=name,
        content=content,
        comment=str(item.get("comment") or "").strip(),
        op=op,
        ttl=_parse_ttl(item.get("ttl"), where),
        backends=tuple(_parse_backend(b, f"{where}.backends[{i}]") for i, b in enumerate(backends_raw)),
    )


def _parse_backend(item: Any, where: str) -> BackendRef:
    if not isinstance(item, dict):
        raise ConfigError(f"{where} must be a mapping")

    provider = str(item.get("provider") or "").strip()
    if not provider:
        raise ConfigError(f"{where} is missing 'provider'")

    zones_raw = item.get("zones") or []
    if not isinstance(zones_raw, list):
        raise ConfigError(f"{where}.zones must be a list")
    zones = tuple(str(z).strip() for z in zones_raw if str(z).strip())

    params: List[Param] = []
    for param in item.get("params") or []:
        if not isinstance(param, dict) or not param.get("name"):
            raise ConfigError(f"{where}.params entries need 'name' and 'value'")
        params.append(Param(name=str(param["name"]).strip(), value=str(param.get("value", "")).strip()))

    return BackendRef(provider=provider, zones=zones, params=tuple(params))


def _parse_provider(item: Any, index: int) -> ProviderConfig:
    where = f"providers[{index}]"
    if not isinstance(item, dict):
        raise ConfigError(f"{where} must be a mapping")

    name = str(item.get("name") or "").strip()
    if not name:
        raise ConfigError(f"{where} is missing 'name'")
    where = f"provider '{name}'"

    provider_type = str(item.get("type") or "").strip().lower()
    provider_cls = PROVIDER_TYPES.get(provider_type)
    if provider_cls is None:
        raise ConfigError(
            f"{where} has unsupported type '{provider_type}'. "
            f"Supported: {', '.join(sorted(PROVIDER_TYPES))}"
        )

    authentication = _parse_authentication(item.get("authentication"), where)
    if authentication is None and provider_cls.REQUIRES_AUTH:
        raise ConfigError(f"{where} requires 'authentication'")
    if authentication is not None and authentication.type_name not in provider_cls.SUPPORTED_AUTH:
        raise ConfigError(
            f"{where} of type {provider_type} does not accept '{authentication.type_name}' "
            f"authentication. Supported: {', '.join(provider_cls.SUPPORTED_AUTH)}"
        )

    url = str(item.get("url") or "").strip()
    if provider_cls.REQUIRES_URL and not url:
        raise ConfigError(f"{where} of type {provider_type} requires 'url'")

    return ProviderConfig(name=name, type=provider_type, authentication=authentication, url=url)


def _parse_authentication(item: Any, where: str) -> Optional[Authentication]:
    if item is None:
        return None
    if not isinstance(item, dict):
        raise ConfigError(f"{where}: authentication must be a mapping")

    auth_type = str(item.get("type") or "").strip().lower()
    value = item.get("value")

    if auth_type == "api_token":
        if not isinstance(value, str) or not value.strip():
            raise ConfigError(f"{where}: api_token authentication needs a string 'value'")
        return ApiToken(value=value.strip())

    if auth_type == "api_key":
        fields = _auth_fields(value, ("email", "key"), where, auth_type)
        return ApiKey(email=fields["email"], key=fields["key"])

    if auth_type == "basic":
        fields = _auth_fields(value, ("username", "password"), where, auth_type)
        return BasicAuth(username=fields["username"], password=fields["password"])

    raise ConfigError(f"{where}: unsupported authentication type '{auth_type}'")


def _auth_fields(value: Any, names: Tuple[str, ...], where: str, auth_type: str) -> Dict[str, str]:
    if not isinstance(value, dict):
        raise ConfigError(f"{where}: {auth_type} authentication 'value' must be a mapping")
    fields = {n: str(value.get(n) or "").strip() for n in names}
    missing = [n for n, v in fields.items() if not v]
    if missing:
        raise ConfigError(f"{where}: {auth_type} authentication is missing {', '.join(missing)}")
    return fields


def _parse_fetcher(item: Any, index: int) -> FetcherConfig:
    where = f"fetchers[{index}]"
    if not isinstance(item, dict):
        raise ConfigError(f"{where} must be a mapping")

    name = str(item.get("name") or "").strip()
    if not name:
        raise ConfigError(f"{where} is missing 'name'")

    fetcher_type = str(item.get("type") or "").strip().lower()
    if fetcher_type not in FETCHER_TYPES:
        raise ConfigError(
            f"fetcher '{name}' has unsupported type '{fetcher_type}'. "
            f"Supported: {', '.join(FETCHER_TYPES)}"
        )

    alive = _parse_int(item.get("alive", 0), f"fetcher '{name}' alive")
    if alive < 0:
        raise ConfigError(f"fetcher '{name}': alive must be non-negative")

    return FetcherConfig(
        name=name,
        type=fetcher_type,
        alive=alive,
        url_v4=str(item.get("url_v4") or "").strip(),
        url_v6=str(item.get("url_v6") or "").strip(),
    )


# =============================================================================
# Utility Functions
# =============================================================================


def _as_list(data: Dict[str, Any], key: str) -> List[Any]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ConfigError(f"'{key}' must be a list")
    return value


def _parse_int(value: Any, what: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{what} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{what} must be an integer, got {value!r}") from None


def _parse_ttl(value: Any, where: str) -> int:
    if value is None:
        return TTL_AUTO
    if isinstance(value, str) and value.strip().lower() == "auto":
        return TTL_AUTO
    ttl = _parse_int(value, f"{where} ttl")
    if ttl < 1:
        raise ConfigError(f"{where}: ttl must be 'auto' or a positive integer")
    return ttl


def _parse_enum(enum_cls: Any, value: str, where: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ConfigError(f"{where}: invalid value '{value}', expected one of: {allowed}") from None


def _check_unique(names: List[str], what: str) -> None:
    seen = set()
    for name in names:
        if name in seen:
            raise ConfigError(f"Duplicate {what} name '{name}'")
        seen.add(name)
