"""Metrics for one OT assurance assessment.

Computes coverage, blind-spot and orphan counts, security-control compliance
of the matched devices, discovery quality and critical-asset coverage from a
reconciliation result and its inventory.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Optional, Sequence

from .profiles import IndustryProfile
from .reconcile import percent, round_half_up
from .schema import AssetRecord, InventoryEntry, MatchType, ReconciliationResult

# Matches that carry field evidence.  Positional pairing does not.
_REAL_MATCH_EXCLUDED = {MatchType.NONE, MatchType.INTELLIGENT_PAIRING}

MANAGED_MIN_CONTROLS = 4
COMPLIANT_MIN_CONTROLS = 3
HIGH_CONFIDENCE_LEVEL = 80
HIGH_RISK_ABOVE = 70
MEDIUM_RISK_FROM = 40


@dataclass
class AssessmentMetrics:
    """Aggregate metrics for one assessment run."""

    # Counts
    n_engineering: int = 0
    n_discovery: int = 0
    n_matched: int = 0
    n_blind_spots: int = 0
    n_orphans: int = 0

    # Core metrics
    coverage_pct: int = 0
    blind_spot_pct: int = 0
    match_types: dict[str, int] = field(default_factory=dict)

    # Classification and validation
    tiers: dict[str, int] = field(default_factory=dict)
    validation: dict[str, int] = field(default_factory=dict)

    # Security controls over matched discovery records
    security_managed: int = 0
    patch_compliant: int = 0
    firewall_protected: int = 0
    encryption_enabled: int = 0
    authentication_required: int = 0
    access_controlled: int = 0
    compliance_gaps: int = 0
    control_pct: dict[str, int] = field(default_factory=dict)

    # Discovery quality
    high_confidence: int = 0
    high_confidence_pct: int = 0
    risk_distribution: dict[str, int] = field(default_factory=dict)
    average_risk: Optional[int] = None

    # Critical assets
    critical_total: int = 0
    critical_matched: int = 0
    critical_coverage_pct: int = 0

    by_plant: dict[str, int] = field(default_factory=dict)
    by_unit: dict[str, int] = field(default_factory=dict)


def controls_met(record: AssetRecord) -> int:
    """Number of the five security controls a device satisfies."""
    return sum(
        [
            record.has_security_patches,
            record.firewall_protected,
            record.encryption_enabled,
            record.authentication_required,
            bool(record.access_control) and record.access_control != "None",
        ]
    )


def risk_distribution(records: Sequence[AssetRecord]) -> tuple[dict[str, int], Optional[int]]:
    dist = {"high": 0, "medium": 0, "low": 0}
    for r in records:
        if r.risk_score > HIGH_RISK_ABOVE:
            dist["high"] += 1
        elif r.risk_score >= MEDIUM_RISK_FROM:
            dist["medium"] += 1
        else:
            dist["low"] += 1
    average = round_half_up(sum(r.risk_score for r in records) / len(records)) if records else None
    return dist, average


def compute_metrics(
    result: ReconciliationResult,
    inventory: Sequence[InventoryEntry],
    profile: Optional[IndustryProfile] = None,
) -> AssessmentMetrics:
    """Compute all assessment metrics from a reconciliation result and its inventory."""
    n_matched = len(result.matched)
    n_engineering = n_matched + len(result.blind_spots)
    n_discovery = n_matched + len(result.orphans)

    devices = [m.discovery for m in result.matched]
    controls = [controls_met(d) for d in devices]

    def _count(attr: str) -> int:
        return sum(1 for d in devices if getattr(d, attr))

    counts = {
        "patch": _count("has_security_patches"),
        "firewall": _count("firewall_protected"),
        "encryption": _count("encryption_enabled"),
        "authentication": _count("authentication_required"),
        "access_control": sum(1 for d in devices if d.access_control and d.access_control != "None"),
    }

    all_discovery = devices + list(result.orphans)
    dist, average = risk_distribution(all_discovery)
    high_confidence = sum(1 for d in devices if d.confidence_level >= HIGH_CONFIDENCE_LEVEL)

    tiers = Counter(f"tier{e.classification.tier}" for e in inventory if e.classification)
    validation = Counter(e.validation.confidence.value for e in inventory if e.validation and e.match_type != MatchType.NONE)

    critical_total = critical_matched = 0
    if profile is not None:
        critical = [e for e in inventory if profile.is_critical(e.criticality)]
        critical_total = len(critical)
        critical_matched = sum(1 for e in critical if e.match_type not in _REAL_MATCH_EXCLUDED)

    return AssessmentMetrics(
        n_engineering=n_engineering,
        n_discovery=n_discovery,
        n_matched=n_matched,
        n_blind_spots=len(result.blind_spots),
        n_orphans=len(result.orphans),
        coverage_pct=result.coverage_percentage,
        blind_spot_pct=percent(len(result.blind_spots), n_engineering),
        match_types=result.match_type_counts(),
        tiers={f"tier{t}": tiers.get(f"tier{t}", 0) for t in (1, 2, 3)},
        validation={c: validation.get(c, 0) for c in ("HIGH", "MEDIUM", "LOW")},
        security_managed=sum(1 for c in controls if c >= MANAGED_MIN_CONTROLS),
        patch_compliant=counts["patch"],
        firewall_protected=counts["firewall"],
        encryption_enabled=counts["encryption"],
        authentication_required=counts["authentication"],
        access_controlled=counts["access_control"],
        compliance_gaps=sum(1 for c in controls if c < COMPLIANT_MIN_CONTROLS),
        control_pct={k: percent(v, n_matched) for k, v in counts.items()},
        high_confidence=high_confidence,
        high_confidence_pct=percent(high_confidence, n_matched),
        risk_distribution=dist,
        average_risk=average,
        critical_total=critical_total,
        critical_matched=critical_matched,
        critical_coverage_pct=percent(critical_matched, critical_total),
        by_plant=dict(Counter(e.plant or "Unknown" for e in inventory)),
        by_unit=dict(Counter(e.unit or "Unknown" for e in inventory)),
    )


def format_metrics(m: AssessmentMetrics) -> str:
    """Return a human-readable summary of metrics."""
    lines = [
        "=== OT Assurance Metrics ===",
        f"Engineering assets:  {m.n_engineering}",
        f"Discovered devices:  {m.n_discovery}",
        f"Matched:             {m.n_matched}",
        f"Blind spots:         {m.n_blind_spots}",
        f"Orphans:             {m.n_orphans}",
        "",
        f"Coverage:            {m.coverage_pct}%",
        f"Blind-spot rate:     {m.blind_spot_pct}%",
    ]
    if m.critical_total:
        lines.append(
            f"Critical coverage:   {m.critical_coverage_pct}% ({m.critical_matched}/{m.critical_total})"
        )
    if m.match_types:
        lines.append("")
        lines.append("Match types:")
        for k, v in m.match_types.items():
            lines.append(f"  {k}: {v}")
    lines.append("")
    lines.append(
        f"Security tiers:      1: {m.tiers.get('tier1', 0)}  2: {m.tiers.get('tier2', 0)}  3: {m.tiers.get('tier3', 0)}"
    )
    if m.n_matched:
        lines.append(f"Security managed:    {m.security_managed} (compliance gaps: {m.compliance_gaps})")
        for k, v in m.control_pct.items():
            lines.append(f"  {k + ':':19s}{v}%")
        lines.append(f"High-confidence:     {m.high_confidence_pct}%")
    if m.average_risk is not None:
        d = m.risk_distribution
        lines.append(
            f"Risk:                avg {m.average_risk} (high {d['high']}, medium {d['medium']}, low {d['low']})"
        )
    return "\n".join(lines)
