"""End-to-end assessment: uploads in, unified inventory and scores out.

One call wires ingestion, reconciliation, classification, cross-validation,
health scoring, metrics, review queues, evidence and provenance together.
Both the HTTP API and the CLI go through `run_assessment`.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import date
from enum import Enum
from typing import Any, Optional, Sequence

from pydantic import BaseModel, Field

from .classify import ReviewItems, ReviewStatus, classify_asset, cross_validate, identify_review_items
from .ingest import RoutedSources, SourceFile, route_sources
from .matching.phased import resolve_strategies
from .metrics import compute_metrics
from .profiles import IndustryDetection, IndustryProfile, detect_industry, load_profiles, resolve_criticality
from .reconcile import reconcile
from .schema import (
    AssetRecord,
    FirmwareStatus,
    InventoryEntry,
    MatchCandidate,
    MatchType,
    ReconcileOutcome,
    SourceType,
)
from .scoring import (
    ALARMS_KEY,
    UPTIME_KEY,
    EvidenceSnapshot,
    PlantPerformanceIndex,
    ProvenanceLog,
    compute_phs,
    compute_ppi,
    evidence_snapshot,
    firmware_status,
    months_overdue,
    read_number,
)


class OutputLevel(str, Enum):
    BASIC = "basic"
    STANDARD = "standard"
    PREMIUM = "premium"


class AssessmentRequest(BaseModel):
    sources: dict[SourceType, list[SourceFile]] = Field(default_factory=dict)
    threshold_months: int = Field(default=18, ge=0, le=600)
    strategies: Optional[list[str]] = None
    synthetic_fill: bool = False
    industry: Optional[str] = None
    output_level: OutputLevel = OutputLevel.STANDARD


class AssessmentReport(BaseModel):
    outcome: ReconcileOutcome
    message: str = ""
    industry: Optional[str] = None
    industry_detection: Optional[IndustryDetection] = None
    coverage_percentage: int = 0
    match_types: dict[str, int] = Field(default_factory=dict)
    inventory: list[InventoryEntry] = Field(default_factory=list)
    blind_spots: Optional[list[InventoryEntry]] = None
    orphans: Optional[list[InventoryEntry]] = None
    review: Optional[ReviewItems] = None
    review_status: Optional[ReviewStatus] = None
    metrics: dict[str, Any] = Field(default_factory=dict)
    ppi: PlantPerformanceIndex = Field(default_factory=PlantPerformanceIndex)
    evidence: Optional[EvidenceSnapshot] = None
    provenance: Optional[ProvenanceLog] = None

    @property
    def ok(self) -> bool:
        return self.outcome == ReconcileOutcome.COMPLETE


# ----------------------------------------------------------------------
# Security overlay
# ----------------------------------------------------------------------

class SecurityIndex:
    """Security-scan records looked up by IP address, then tag id.  First record wins."""

    def __init__(self, records: Sequence[AssetRecord]) -> None:
        self.by_ip: dict[str, AssetRecord] = {}
        self.by_tag: dict[str, AssetRecord] = {}
        for r in records:
            if r.ip_address:
                self.by_ip.setdefault(r.ip_address, r)
            if r.tag_id:
                self.by_tag.setdefault(r.tag_id, r)

    def lookup(self, ip_address: str, tag_id: str) -> Optional[AssetRecord]:
        if ip_address and ip_address in self.by_ip:
            return self.by_ip[ip_address]
        if tag_id and tag_id in self.by_tag:
            return self.by_tag[tag_id]
        return None


def _overlay_security(entry: InventoryEntry, scan: Optional[AssetRecord]) -> int:
    """Copy scanner flags onto an entry; return the number of extra sources (0 or 1)."""
    if scan is None:
        return 0
    entry.vulnerabilities = max(entry.vulnerabilities, scan.vulnerabilities)
    entry.cve_count = max(entry.cve_count, scan.cve_count)
    entry.is_managed = entry.is_managed or scan.is_managed
    if scan.last_patch:
        entry.last_patch = scan.last_patch
    entry.security_source = scan.source_id
    return 1


# ----------------------------------------------------------------------
# Inventory construction
# ----------------------------------------------------------------------

def _historian(*records: AssetRecord) -> tuple[Optional[float], Optional[float]]:
    uptime = alarms = None
    for r in records:
        if uptime is None:
            uptime = read_number(r.attributes, UPTIME_KEY)
        if alarms is None:
            alarms = read_number(r.attributes, ALARMS_KEY)
    return uptime, alarms


def _score(
    entry: InventoryEntry,
    status: Optional[FirmwareStatus],
    source_count: int,
    threshold_months: int,
    today: Optional[date],
    *records: AssetRecord,
) -> None:
    entry.firmware_status = status or firmware_status(entry.last_patch, threshold_months, today)
    entry.months_overdue = months_overdue(entry.last_patch, threshold_months, today)
    uptime, alarms = _historian(*records)
    entry.phs = compute_phs(
        entry.firmware_status,
        entry.months_overdue,
        source_count,
        entry.criticality,
        uptime=uptime,
        alarms=alarms,
    )


def matched_entry(
    match: MatchCandidate,
    profile: IndustryProfile,
    security: SecurityIndex,
    threshold_months: int,
    today: Optional[date] = None,
) -> InventoryEntry:
    eng, disc = match.engineering, match.discovery
    entry = InventoryEntry(
        tag_id=eng.tag_id or disc.tag_id or "UNKNOWN",
        ip_address=disc.ip_address or eng.ip_address,
        hostname=disc.hostname or eng.hostname,
        mac_address=disc.mac_address or eng.mac_address,
        plant=eng.plant or disc.plant,
        unit=eng.unit or disc.unit,
        device_type=eng.device_type or disc.device_type,
        manufacturer=eng.manufacturer or disc.manufacturer,
        model=eng.model or disc.model,
        criticality=resolve_criticality(eng, profile) or disc.criticality,
        last_seen=disc.last_seen,
        is_managed=disc.is_managed,
        vulnerabilities=disc.vulnerabilities,
        cve_count=disc.cve_count,
        last_patch=disc.last_patch or eng.last_patch,
        match_type=match.match_type,
        match_confidence=match.confidence,
        classification=classify_asset(eng),
        validation=cross_validate(eng, disc),
        engineering_source=eng.source_id,
        engineering_row=eng.row_index,
        discovery_source=disc.source_id,
        discovery_row=disc.row_index,
    )
    extra = _overlay_security(entry, security.lookup(entry.ip_address, entry.tag_id))
    _score(entry, None, 2 + extra, threshold_months, today, eng, disc)
    return entry


def blind_spot_entry(
    eng: AssetRecord,
    profile: IndustryProfile,
    security: SecurityIndex,
    threshold_months: int,
    today: Optional[date] = None,
) -> InventoryEntry:
    entry = InventoryEntry(
        tag_id=eng.tag_id or "UNKNOWN",
        ip_address=eng.ip_address,
        hostname=eng.hostname,
        mac_address=eng.mac_address,
        plant=eng.plant,
        unit=eng.unit,
        device_type=eng.device_type,
        manufacturer=eng.manufacturer,
        model=eng.model,
        criticality=resolve_criticality(eng, profile),
        last_patch=eng.last_patch,
        match_type=MatchType.NONE,
        match_confidence=0,
        classification=classify_asset(eng),
        validation=cross_validate(eng, None),
        engineering_source=eng.source_id,
        engineering_row=eng.row_index,
    )
    extra = _overlay_security(entry, security.lookup(entry.ip_address, entry.tag_id))
    _score(entry, FirmwareStatus.MISSING_ON_NETWORK, 1 + extra, threshold_months, today, eng)
    return entry


def orphan_entry(
    disc: AssetRecord, threshold_months: int, today: Optional[date] = None
) -> InventoryEntry:
    entry = InventoryEntry(
        tag_id=disc.tag_id,
        ip_address=disc.ip_address,
        hostname=disc.hostname,
        mac_address=disc.mac_address,
        plant=disc.plant,
        unit=disc.unit,
        device_type=disc.device_type,
        manufacturer=disc.manufacturer,
        model=disc.model,
        criticality=disc.criticality,
        last_seen=disc.last_seen,
        is_managed=disc.is_managed,
        vulnerabilities=disc.vulnerabilities,
        cve_count=disc.cve_count,
        last_patch=disc.last_patch,
        match_type=MatchType.NONE,
        match_confidence=0,
        classification=classify_asset(disc),
        discovery_source=disc.source_id,
        discovery_row=disc.row_index,
    )
    _score(entry, FirmwareStatus.ORPHANED_IN_NETWORK, 1, threshold_months, today, disc)
    return entry


# ----------------------------------------------------------------------
# Pipeline
# ----------------------------------------------------------------------

def _select_profile(
    request: AssessmentRequest, engineering: Sequence[AssetRecord]
) -> tuple[IndustryProfile, Optional[IndustryDetection]]:
    profiles = load_profiles()
    if request.industry:
        return profiles.get(request.industry), None
    detection = detect_industry(engineering, profiles=profiles)
    return profiles.get(detection.detected), detection


def _record_sources(log: ProvenanceLog, request: AssessmentRequest, routed: RoutedSources) -> None:
    all_records = routed.engineering + routed.discovery + routed.security + routed.other
    for source_type, files in request.sources.items():
        for f in files:
            detected = routed.detected.get(f.filename, source_type.value)
            source_id = f"{detected}:{f.filename}"
            rows = sum(1 for r in all_records if r.source_id == source_id)
            log.record_source(source_id, f.content, rows, detected)


def run_assessment(request: AssessmentRequest, today: Optional[date] = None) -> AssessmentReport:
    """
    Run a full assessment over the uploaded exports.

    Args:
        request: Uploaded files grouped by kind, plus run options.
        today: Reference date for patch ageing; defaults to the current date.

    Returns:
        AssessmentReport.  When the engineering baseline is empty the outcome
        is `empty_engineering` and nothing else is computed.

    Raises:
        ValueError: Unknown strategy or industry name.
        IngestError: An upload could not be parsed as CSV.
    """
    strategies = resolve_strategies(request.strategies)
    if request.synthetic_fill and MatchType.INTELLIGENT_PAIRING not in strategies:
        strategies = resolve_strategies([*strategies, MatchType.INTELLIGENT_PAIRING])

    log = ProvenanceLog()
    log.record(
        "PIPELINE_START",
        threshold_months=request.threshold_months,
        strategies=[s.value for s in strategies],
        output_level=request.output_level.value,
    )

    routed = route_sources(request.sources)
    _record_sources(log, request, routed)

    if not routed.engineering:
        log.record("PIPELINE_ABORTED", reason="empty engineering baseline", files=routed.files)
        return AssessmentReport(
            outcome=ReconcileOutcome.EMPTY_ENGINEERING,
            message="Engineering baseline is empty; upload at least one engineering asset.",
        )

    profile, detection = _select_profile(request, routed.engineering)
    log.record("INDUSTRY_SELECTED", industry=profile.id, detected=detection is not None)

    result = reconcile(routed.engineering, routed.discovery, strategies)
    log.record(
        "MATCHING_COMPLETE",
        matched=len(result.matched),
        blind_spots=len(result.blind_spots),
        orphans=len(result.orphans),
        match_types=result.match_type_counts(),
    )

    security = SecurityIndex(routed.security)
    threshold = request.threshold_months
    inventory = [matched_entry(m, profile, security, threshold, today) for m in result.matched]
    inventory += [blind_spot_entry(b, profile, security, threshold, today) for b in result.blind_spots]
    orphans = [orphan_entry(o, threshold, today) for o in result.orphans]

    review = identify_review_items(inventory, result.blind_spots, result.orphans)
    metrics = compute_metrics(result, inventory, profile)
    ppi = compute_ppi((e.plant, e.criticality, e.phs or 0) for e in inventory + orphans)

    kpis = {
        "engineering_total": metrics.n_engineering,
        "discovery_total": metrics.n_discovery,
        "coverage_pct": metrics.coverage_pct,
        "missing_on_network": metrics.n_blind_spots,
        "orphans_on_network": metrics.n_orphans,
        "outdated_critical": sum(
            1
            for e in inventory
            if e.firmware_status == FirmwareStatus.OUTDATED and profile.is_critical(e.criticality)
        ),
    }
    evidence = evidence_snapshot(
        threshold, kpis, ppi, len(inventory) + len(orphans), routed.counts()
    )
    log.record("PIPELINE_COMPLETE", snapshot_hash=evidence.snapshot_hash, files=routed.files)
    logging.info(f"Assessment complete: {metrics.n_matched} matched, evidence {evidence.snapshot_hash[:12]}")

    report = AssessmentReport(
        outcome=result.outcome,
        industry=profile.id,
        industry_detection=detection,
        coverage_percentage=result.coverage_percentage,
        match_types=result.match_type_counts(),
        inventory=inventory,
        metrics=asdict(metrics),
        ppi=ppi,
        evidence=evidence,
    )
    if request.output_level in (OutputLevel.STANDARD, OutputLevel.PREMIUM):
        report.blind_spots = [e for e in inventory if e.match_type == MatchType.NONE]
        report.orphans = orphans
        report.review = review
        report.review_status = review.status
    if request.output_level == OutputLevel.PREMIUM:
        report.provenance = log
    return report
