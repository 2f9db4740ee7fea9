"""Reconciliation engine.

For every ResolvedTarget the engine lists the live records at the provider,
computes the minimal corrective action against the desired state and applies
it. Targets are independent: they run on a bounded thread pool, in no
particular order, and a failure in one never stops the others. Nothing is
retried within a cycle; the next cycle's diff picks up whatever is left.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from .errors import CycleCancelledError, DNSSyncError, PermanentError
from .models import (
    LiveRecord,
    Outcome,
    ReconciliationResult,
    RecordOp,
    ResolvedTarget,
    content_matches,
)
from .providers import DNSProvider

logger = logging.getLogger(__name__)

# =============================================================================
# Diff
# =============================================================================


@dataclass(frozen=True)
class Plan:
    """Corrective action for one target."""

    outcome: Outcome
    create: bool = False
    update_id: Optional[str] = None
    delete_ids: Tuple[str, ...] = ()

    def describe(self) -> str:
        parts = []
        if self.create:
            parts.append("create")
        if self.update_id:
            parts.append(f"update {self.update_id}")
        if self.delete_ids:
            parts.append(f"delete {', '.join(self.delete_ids)}")
        return "; ".join(parts) or "in sync"


NOOP_PLAN = Plan(outcome=Outcome.NOOP)


def plan_action(
    target: ResolvedTarget,
    live: Sequence[LiveRecord],
    drifted: Callable[[LiveRecord], bool] = lambda record: False,
) -> Plan:
    """Compute what has to change so that live state matches the target.

    Args:
        target: Desired state
        live: Live records of the target's (type, name) in its zone
        drifted: Whether a record with matching content still needs an update

    Returns:
        The Plan to apply (NOOP_PLAN when already converged)
    """
    if target.op is RecordOp.DELETE:
        if target.content is None:
            doomed = list(live)
        else:
            doomed = [r for r in live if content_matches(target.type, r.content, target.content)]
        if not doomed:
            return NOOP_PLAN
        return Plan(outcome=Outcome.DELETED, delete_ids=tuple(r.id for r in doomed))

    # CREATE, UPDATE and PURGE all mean "ensure present with this content".
    content = target.content or ""
    match = next((r for r in live if content_matches(target.type, r.content, content)), None)
    create = False
    update_id: Optional[str] = None

    if match is not None:
        keep: Optional[LiveRecord] = match
        if drifted(match):
            update_id = match.id
    elif live:
        keep = live[0]
        update_id = keep.id
    else:
        keep = None
        create = True

    delete_ids: Tuple[str, ...] = ()
    if target.op is RecordOp.PURGE:
        delete_ids = tuple(r.id for r in live if r is not keep)

    if create:
        outcome = Outcome.CREATED
    elif update_id or delete_ids:
        outcome = Outcome.UPDATED
    else:
        return NOOP_PLAN
    return Plan(outcome=outcome, create=create, update_id=update_id, delete_ids=delete_ids)


# =============================================================================
# Engine
# =============================================================================


def _failed(target: ResolvedTarget, error: Exception) -> ReconciliationResult:
    return ReconciliationResult(target=target, outcome=Outcome.FAILED, error=error, detail=str(error))


def _log_failure(target: ResolvedTarget, error: Exception) -> None:
    level = logging.ERROR if getattr(error, "fatal", False) else logging.WARNING
    logger.log(level, f"{target}: {type(error).__name__}: {error}")


def _cancelled(cancel_event: Optional[threading.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()


class ReconciliationEngine:
    def __init__(self, providers: Dict[str, DNSProvider], max_workers: int = 8):
        self.providers = providers
        self.max_workers = max(1, max_workers)

    def run_cycle(
        self,
        targets: Sequence[ResolvedTarget],
        cancel_event: Optional[threading.Event] = None,
    ) -> List[ReconciliationResult]:
        """Reconcile every target once.

        Args:
            targets: Targets produced by the DesiredStateResolver for this cycle
            cancel_event: Set to stop starting new targets and new writes

        Returns:
            One result per target, in the order the targets were given
        """
        results: Dict[int, ReconciliationResult] = {}
        pending: List[Tuple[int, ResolvedTarget]] = []

        for index, target in enumerate(targets):
            if target.error is not None:
                _log_failure(target, target.error)
                results[index] = _failed(target, target.error)
            elif target.provider not in self.providers:
                error = PermanentError(f"provider '{target.provider}' is not configured")
                _log_failure(target, error)
                results[index] = _failed(target, error)
            else:
                pending.append((index, target))

        auth_failures = self._authenticate({t.provider for _, t in pending})

        runnable: List[Tuple[int, ResolvedTarget]] = []
        for index, target in pending:
            if target.provider in auth_failures:
                results[index] = _failed(target, auth_failures[target.provider])
            else:
                runnable.append((index, target))

        if runnable:
            workers = min(self.max_workers, len(runnable))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="reconcile") as executor:
                future_to_index = {
                    executor.submit(self.reconcile_target, target, cancel_event): index
                    for index, target in runnable
                }
                for future in as_completed(future_to_index):
                    results[future_to_index[future]] = future.result()

        return [results[i] for i in range(len(targets))]

    def _authenticate(self, provider_names: Set[str]) -> Dict[str, Exception]:
        """Authenticate each provider once; return the ones that failed."""
        failures: Dict[str, Exception] = {}
        for name in sorted(provider_names):
            try:
                self.providers[name].authenticate()
            except DNSSyncError as e:
                logger.error(f"Provider '{name}' unavailable for this cycle: {type(e).__name__}: {e}")
                failures[name] = e
            except Exception as e:
                logger.error(f"Provider '{name}' authentication crashed: {e}", exc_info=True)
                failures[name] = e
        return failures

    def reconcile_target(
        self,
        target: ResolvedTarget,
        cancel_event: Optional[threading.Event] = None,
    ) -> ReconciliationResult:
        """List, diff and apply for a single target. Never raises."""
        if _cancelled(cancel_event):
            return _failed(target, CycleCancelledError("cycle cancelled before start"))

        provider = self.providers[target.provider]
        try:
            live = [
                r
                for r in provider.list_records(target.zone, target.type, target.fqdn)
                if r.type is target.type and r.name.rstrip(".").lower() == target.fqdn
            ]
            plan = plan_action(target, live, lambda record: provider.record_drifted(record, target))

            if plan.outcome is Outcome.NOOP:
                logger.debug(f"{target}: in sync")
                return ReconciliationResult(target=target, outcome=Outcome.NOOP)

            if _cancelled(cancel_event):
                return _failed(target, CycleCancelledError("cycle cancelled before write"))

            if target.op is RecordOp.UPDATE and plan.create:
                logger.info(f"{target}: record missing, creating it")
            self._apply(provider, target, plan)
            return ReconciliationResult(target=target, outcome=plan.outcome, detail=plan.describe())

        except DNSSyncError as e:
            _log_failure(target, e)
            return _failed(target, e)
        except Exception as e:
            logger.error(f"{target}: unexpected error: {e}", exc_info=True)
            return _failed(target, e)

    def _apply(self, provider: DNSProvider, target: ResolvedTarget, plan: Plan) -> None:
        if plan.create:
            provider.create_record(target.zone, target)
        elif plan.update_id:
            provider.update_record(target.zone, plan.update_id, target)
        for record_id in plan.delete_ids:
            provider.delete_record(target.zone, record_id)
