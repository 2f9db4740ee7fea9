"""Expansion of configured records into per-provider, per-zone targets."""

from __future__ import annotations

import ipaddress
import logging
from typing import Dict, List, Optional, Set, Tuple, Type

from .errors import ResolutionError, ValidationError
from .fetchers import FetcherStatus, PublicIPResolver
from .models import (
    BackendRef,
    RecordOp,
    RecordSpec,
    ResolvedTarget,
    SyncConfig,
    normalize_content,
)
from .providers import PROVIDER_TYPES, DNSProvider

logger = logging.getLogger(__name__)


class DesiredStateResolver:
    """Turns the configured record list into ResolvedTargets for one cycle.

    Resolution is best-effort: every problem is collected as a ValidationError
    that skips only the record or backend it concerns, and a public IP that
    cannot be resolved marks only the affected targets as failed.
    """

    def __init__(
        self,
        ip_resolver: Optional[PublicIPResolver],
        public_ip_fetcher: Optional[str],
        provider_types: Optional[Dict[str, Type[DNSProvider]]] = None,
    ):
        self._ip_resolver = ip_resolver
        self._public_ip_fetcher = public_ip_fetcher
        self._provider_types = provider_types if provider_types is not None else PROVIDER_TYPES

    def resolve(self, config: SyncConfig) -> Tuple[List[ResolvedTarget], List[ValidationError]]:
        errors: List[ValidationError] = []
        candidates: List[ResolvedTarget] = []
        # One public IP lookup per address family per cycle.
        public_ips: Dict[str, Tuple[Optional[str], Optional[ResolutionError]]] = {}

        for spec in config.records:
            try:
                content, error = self._resolve_content(spec, public_ips)
            except ValidationError as e:
                errors.append(e)
                continue

            for backend in spec.backends:
                try:
                    self._check_backend(spec, backend, config)
                except ValidationError as e:
                    errors.append(e)
                    continue

                for zone in backend.zones:
                    candidates.append(
                        ResolvedTarget(
                            type=spec.type,
                            name=spec.name,
                            zone=zone,
                            provider=backend.provider,
                            op=spec.op,
                            content=content,
                            ttl=spec.ttl,
                            comment=spec.comment,
                            params=backend.params,
                            error=error,
                        )
                    )

        targets = self._drop_conflicts(candidates, errors)
        logger.debug(
            f"Resolved {len(targets)} target(s) from {len(config.records)} record(s), "
            f"{len(errors)} validation error(s)"
        )
        return targets, errors

    def unhealthy_fetchers(self) -> Dict[str, FetcherStatus]:
        if self._ip_resolver is None:
            return {}
        return self._ip_resolver.unhealthy()

    def _resolve_content(
        self,
        spec: RecordSpec,
        public_ips: Dict[str, Tuple[Optional[str], Optional[ResolutionError]]],
    ) -> Tuple[Optional[str], Optional[ResolutionError]]:
        if spec.content is not None:
            if spec.type.is_address:
                _check_address(spec)
            return spec.content, None

        # Deleting without content removes every record of (type, name).
        if spec.op is RecordOp.DELETE:
            return None, None

        if not spec.type.is_address:
            raise ValidationError(f"content is required for {spec.type.value} records", spec.label)
        if not self._public_ip_fetcher:
            raise ValidationError("no content given and no public_ip_fecher configured", spec.label)
        if self._ip_resolver is None or not self._ip_resolver.has_fetcher(self._public_ip_fetcher):
            raise ValidationError(
                f"public_ip_fecher '{self._public_ip_fetcher}' is not a declared fetcher", spec.label
            )

        family = spec.type.ip_family
        if family not in public_ips:
            try:
                public_ips[family] = (self._ip_resolver.resolve(self._public_ip_fetcher, family), None)
            except ResolutionError as e:
                logger.warning(f"Public {family} address unavailable: {e}")
                public_ips[family] = (None, e)
        return public_ips[family]

    def _check_backend(self, spec: RecordSpec, backend: BackendRef, config: SyncConfig) -> None:
        provider = config.provider(backend.provider)
        if provider is None:
            raise ValidationError(f"unknown provider '{backend.provider}'", spec.label)
        if not backend.zones:
            raise ValidationError(f"backend '{backend.provider}' lists no zones", spec.label)

        provider_cls = self._provider_types.get(provider.type)
        if provider_cls is None:
            raise ValidationError(f"provider '{provider.name}' has unknown type '{provider.type}'", spec.label)
        if spec.type not in provider_cls.SUPPORTED_TYPES:
            raise ValidationError(
                f"provider '{provider.name}' ({provider.type}) cannot manage {spec.type.value} records",
                spec.label,
            )

        unsupported = sorted({p.name for p in backend.params} - set(provider_cls.SUPPORTED_PARAMS))
        if unsupported:
            raise ValidationError(
                f"provider '{provider.name}' ({provider.type}) does not accept params: "
                f"{', '.join(unsupported)}",
                spec.label,
            )

    def _drop_conflicts(
        self, candidates: List[ResolvedTarget], errors: List[ValidationError]
    ) -> List[ResolvedTarget]:
        """Collapse identical duplicates and drop keys with conflicting desired state."""
        by_key: Dict[Tuple[str, str, str, str], List[ResolvedTarget]] = {}
        for target in candidates:
            by_key.setdefault(target.key, []).append(target)

        conflicting: Set[Tuple[str, str, str, str]] = set()
        for key, group in by_key.items():
            wanted = {
                (t.op, normalize_content(t.type, t.content) if t.content is not None else None)
                for t in group
            }
            if len(wanted) > 1:
                conflicting.add(key)
                errors.append(
                    ValidationError(
                        f"conflicting desired state at {group[0].provider}/{group[0].zone}: "
                        + ", ".join(sorted(f"{op.value}={content}" for op, content in wanted)),
                        f"{group[0].type.value} {group[0].fqdn}",
                    )
                )

        targets: List[ResolvedTarget] = []
        seen: Set[Tuple[str, str, str, str]] = set()
        for target in candidates:
            if target.key in conflicting or target.key in seen:
                continue
            seen.add(target.key)
            targets.append(target)
        return targets


def _check_address(spec: RecordSpec) -> None:
    try:
        address = ipaddress.ip_address(spec.content or "")
    except ValueError:
        raise ValidationError(f"'{spec.content}' is not an IP address", spec.label) from None
    expected = 6 if spec.type.ip_family == "ipv6" else 4
    if address.version != expected:
        raise ValidationError(
            f"'{spec.content}' is not an IPv{expected} address", spec.label
        )
