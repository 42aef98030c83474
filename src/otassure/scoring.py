"""Health scoring, evidence snapshot and provenance log.

PHS (performance health score) rates one inventory entry from 0 to 100 by
subtracting weighted penalties for patch age, visibility gaps, orphaning,
poor uptime and alarm floods.  PPI (plant performance index) is the
criticality-weighted mean of PHS per plant.
"""

from __future__ import annotations

import hashlib
import json
import uuid
from datetime import date, datetime, timezone
from typing import Any, Iterable, Mapping, Optional

import pandas as pd
from pydantic import BaseModel, Field

from .reconcile import round_half_up
from .schema import FirmwareStatus

PATCH_PENALTY_CAP = 40
MISSING_PENALTY = 40
SINGLE_SOURCE_PENALTY = 10
ORPHAN_PENALTY = 30
UPTIME_TARGET = 98.0
UPTIME_PENALTY_CAP = 20
ALARM_ALLOWANCE = 10
ALARM_PENALTY_CAP = 20

UPTIME_KEY = "uptime_pct_30d"
ALARMS_KEY = "alarm_count_30d"


def _parse_patch_date(last_patch: str) -> Optional[date]:
    try:
        return datetime.strptime(last_patch.strip(), "%Y-%m-%d").date()
    except ValueError:
        return None


def _whole_months_between(start: date, end: date) -> int:
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        months -= 1
    return months


def firmware_status(
    last_patch: str, threshold_months: int, today: Optional[date] = None
) -> FirmwareStatus:
    """OUTDATED when the last patch is older than `threshold_months`, OK when newer."""
    patched = _parse_patch_date(last_patch) if last_patch else None
    if patched is None:
        return FirmwareStatus.UNKNOWN
    today = today or date.today()
    cutoff = (pd.Timestamp(today) - pd.DateOffset(months=threshold_months)).date()
    return FirmwareStatus.OUTDATED if patched < cutoff else FirmwareStatus.OK


def months_overdue(last_patch: str, threshold_months: int, today: Optional[date] = None) -> int:
    """Whole months past the patch threshold; 0 when on time or unknown."""
    patched = _parse_patch_date(last_patch) if last_patch else None
    if patched is None:
        return 0
    overdue = _whole_months_between(patched, today or date.today()) - threshold_months
    return max(overdue, 0)


def read_number(attributes: Mapping[str, Any], key: str) -> Optional[float]:
    """A numeric historian column from a record's attributes, or None."""
    value = attributes.get(key)
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if pd.isna(number) else number


def criticality_multiplier(criticality: str) -> float:
    label = criticality.strip().lower()
    if label in ("high", "critical"):
        return 1.3
    if label == "medium":
        return 1.1
    return 1.0


def criticality_weight(criticality: str) -> int:
    label = criticality.strip().lower()
    if label in ("high", "critical"):
        return 3
    if label == "medium":
        return 2
    return 1


def compute_phs(
    status: FirmwareStatus,
    overdue: int,
    source_count: int,
    criticality: str = "",
    uptime: Optional[float] = None,
    alarms: Optional[float] = None,
) -> int:
    """
    Performance health score for one inventory entry.

    Args:
        status: Firmware status, which also carries the blind-spot and
            orphan states.
        overdue: Whole months past the patch threshold.
        source_count: Number of sources that reported the asset.
        criticality: Criticality label, scales the total penalty.
        uptime: 30-day uptime percentage, if a historian reported it.
        alarms: 30-day alarm count, if a historian reported it.

    Returns:
        int: Score clamped to 0..100.
    """
    patch = min(PATCH_PENALTY_CAP, overdue * 2)
    if status == FirmwareStatus.MISSING_ON_NETWORK:
        visibility = MISSING_PENALTY
    else:
        visibility = 0 if source_count >= 2 else SINGLE_SOURCE_PENALTY
    orphan = ORPHAN_PENALTY if status == FirmwareStatus.ORPHANED_IN_NETWORK else 0
    uptime_penalty = (
        min(UPTIME_PENALTY_CAP, (UPTIME_TARGET - uptime) * 2)
        if uptime is not None and uptime < UPTIME_TARGET
        else 0
    )
    alarm_penalty = (
        min(ALARM_PENALTY_CAP, alarms - ALARM_ALLOWANCE)
        if alarms is not None and alarms > ALARM_ALLOWANCE
        else 0
    )

    penalty = patch + visibility + orphan + uptime_penalty + alarm_penalty
    return max(0, round_half_up(100 - criticality_multiplier(criticality) * penalty))


class PlantPerformanceIndex(BaseModel):
    by_plant: dict[str, int] = Field(default_factory=dict)
    overall: int = 0


def compute_ppi(scored: Iterable[tuple[str, str, int]]) -> PlantPerformanceIndex:
    """Criticality-weighted mean PHS per plant and overall, from (plant, criticality, phs)."""
    sums: dict[str, list[float]] = {}
    for plant, criticality, phs in scored:
        weight = criticality_weight(criticality)
        acc = sums.setdefault(plant or "Unknown", [0.0, 0.0])
        acc[0] += phs * weight
        acc[1] += weight

    by_plant = {p: round_half_up(s / w) if w else 0 for p, (s, w) in sums.items()}
    total_s = sum(s for s, _ in sums.values())
    total_w = sum(w for _, w in sums.values())
    return PlantPerformanceIndex(
        by_plant=by_plant,
        overall=round_half_up(total_s / total_w) if total_w else 0,
    )


# ----------------------------------------------------------------------
# Evidence and provenance
# ----------------------------------------------------------------------

def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


class EvidenceSnapshot(BaseModel):
    generated_at: str
    threshold_months: int
    kpis: dict[str, Any]
    ppi: PlantPerformanceIndex
    assets_count: int
    sources: dict[str, int]
    snapshot_hash: str = ""


def evidence_snapshot(
    threshold_months: int,
    kpis: Mapping[str, Any],
    ppi: PlantPerformanceIndex,
    assets_count: int,
    sources: Mapping[str, int],
    generated_at: Optional[str] = None,
) -> EvidenceSnapshot:
    """Freeze the headline numbers of a run and hash them (SHA-256 over canonical JSON)."""
    snapshot = EvidenceSnapshot(
        generated_at=generated_at or _utc_now(),
        threshold_months=threshold_months,
        kpis=dict(kpis),
        ppi=ppi,
        assets_count=assets_count,
        sources=dict(sources),
    )
    body = snapshot.model_dump(exclude={"snapshot_hash"})
    snapshot.snapshot_hash = hashlib.sha256(canonical_json(body).encode("utf-8")).hexdigest()
    return snapshot


class ProvenanceEvent(BaseModel):
    sequence: int
    event_type: str
    timestamp: str
    details: dict[str, Any] = Field(default_factory=dict)


class ProvenanceLog(BaseModel):
    """Ordered audit trail for one assessment session."""

    session_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    started_at: str = Field(default_factory=_utc_now)
    events: list[ProvenanceEvent] = Field(default_factory=list)

    def record(self, event_type: str, **details: Any) -> ProvenanceEvent:
        event = ProvenanceEvent(
            sequence=len(self.events),
            event_type=event_type,
            timestamp=_utc_now(),
            details=details,
        )
        self.events.append(event)
        return event

    def record_source(self, source_id: str, content: str, row_count: int, detected_type: str) -> ProvenanceEvent:
        checksum = hashlib.sha256(content.encode("utf-8")).hexdigest()
        return self.record(
            "SOURCE_INGESTED",
            source_id=source_id,
            checksum=checksum,
            row_count=row_count,
            detected_type=detected_type,
        )
