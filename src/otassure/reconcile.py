"""Reconciliation entry point: AssetRecord lists ↔ strategy passes ↔ result.

The strategy passes themselves live in `matching.phased`.  This module checks
the precondition, runs the passes and derives blind spots, orphans and
coverage from the consumed index sets.
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence

from .matching.phased import resolve_strategies, run_passes
from .schema import AssetRecord, MatchType, ReconciliationResult, ReconcileOutcome


def round_half_up(value: float | Decimal) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percent(part: int, whole: int) -> int:
    """Integer percentage of part over whole, rounded half-up; 0 when whole is 0."""
    if whole <= 0:
        return 0
    return round_half_up(Decimal(part) * 100 / Decimal(whole))


def reconcile(
    engineering: Sequence[AssetRecord],
    discovery: Sequence[AssetRecord],
    strategies: Iterable[str | MatchType] | None = None,
) -> ReconciliationResult:
    """Reconcile an engineering baseline against discovery records.

    Each discovery record is consumed by at most one match, in strict
    strategy-priority order.  Missing identity fields are not an error: such
    records simply end up in blind spots or orphans.

    Args:
        engineering: Baseline records, in input order.
        discovery: Discovery records, in input order.
        strategies: Enabled strategy names.  None selects the defaults
            (exact tag, IP, hostname, MAC, type/manufacturer fallback).

    Returns:
        ReconciliationResult.  With an empty engineering set the outcome is
        `empty_engineering` and every discovery record is reported as an orphan.

    Raises:
        ValueError: If a strategy name is unknown.
    """
    enabled = resolve_strategies(strategies)

    if not engineering:
        logging.warning("Engineering baseline is empty; nothing to reconcile.")
        return ReconciliationResult(
            orphans=list(discovery),
            outcome=ReconcileOutcome.EMPTY_ENGINEERING,
            strategies=enabled,
        )

    state = run_passes(engineering, discovery, enabled)

    blind_spots = [e for i, e in enumerate(engineering) if i not in state.used_engineering]
    orphans = [d for j, d in enumerate(discovery) if j not in state.used_discovery]
    coverage = percent(len(state.matched), len(engineering))

    logging.info(
        f"Reconciled: {len(state.matched)} matched, {len(blind_spots)} blind spots, "
        f"{len(orphans)} orphans, coverage {coverage}%"
    )

    return ReconciliationResult(
        matched=state.matched,
        blind_spots=blind_spots,
        orphans=orphans,
        coverage_percentage=coverage,
        outcome=ReconcileOutcome.COMPLETE,
        strategies=enabled,
    )
