"""Canonical schema for OT asset records and reconciliation outputs.

This module defines the data model shared by the engineering baseline and the
network-discovery side.  Every CSV row is normalized into an `AssetRecord`
before any matching happens, so the reconciler only ever sees these models.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class SourceType(str, Enum):
    ENGINEERING = "engineering"
    DISCOVERY = "otDiscovery"
    SECURITY = "security"
    OTHER = "other"


class MatchType(str, Enum):
    EXACT_TAG_ID = "exact_tag_id"
    IP_MATCH = "ip_match"
    HOSTNAME_MATCH = "hostname_match"
    MAC_MATCH = "mac_match"
    PARTIAL_TAG_ID = "partial_tag_id"
    FUZZY_TYPE_MANUFACTURER = "fuzzy_type_manufacturer"
    INTELLIGENT_PAIRING = "intelligent_pairing"
    NONE = "none"


# Fixed per strategy, never computed per field.
MATCH_CONFIDENCE: dict[MatchType, int] = {
    MatchType.EXACT_TAG_ID: 100,
    MatchType.IP_MATCH: 95,
    MatchType.HOSTNAME_MATCH: 90,
    MatchType.MAC_MATCH: 85,
    MatchType.PARTIAL_TAG_ID: 70,
    MatchType.FUZZY_TYPE_MANUFACTURER: 60,
    MatchType.INTELLIGENT_PAIRING: 50,
    MatchType.NONE: 0,
}


class ReconcileOutcome(str, Enum):
    COMPLETE = "complete"
    EMPTY_ENGINEERING = "empty_engineering"


class SecurityRequirement(str, Enum):
    MUST = "MUST"
    SHOULD = "SHOULD"
    NONE = "NONE"


class ValidationStatus(str, Enum):
    VERIFIED = "VERIFIED"
    PARTIAL = "PARTIAL"
    SUSPICIOUS = "SUSPICIOUS"
    UNVALIDATED = "UNVALIDATED"


class ValidationConfidence(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class FirmwareStatus(str, Enum):
    OK = "OK"
    OUTDATED = "OUTDATED"
    UNKNOWN = "UNKNOWN"
    MISSING_ON_NETWORK = "MISSING_ON_NETWORK"
    ORPHANED_IN_NETWORK = "ORPHANED_IN_NETWORK"


class AssetRecord(BaseModel):
    """A single asset row in canonical form.

    Identity fields are the only join keys.  Descriptive fields are used for
    fuzzy tie-breaking and reporting.  Missing values are empty strings,
    False or 0, never None, so that comparisons downstream stay total.
    """

    # Identity
    tag_id: str = ""
    ip_address: str = ""
    mac_address: str = ""
    hostname: str = ""

    # Descriptive
    plant: str = ""
    unit: str = ""
    device_type: str = ""
    manufacturer: str = ""
    model: str = ""
    criticality: str = ""

    # Security posture, as reported by discovery and scanner tools
    is_managed: bool = False
    has_security_patches: bool = False
    encryption_enabled: bool = False
    authentication_required: bool = False
    firewall_protected: bool = False
    access_control: str = "None"
    vulnerabilities: int = Field(default=0, ge=0)
    cve_count: int = Field(default=0, ge=0)
    risk_score: int = 0
    confidence_level: int = 0
    last_seen: str = ""
    last_patch: str = ""

    # Provenance
    source_id: str = ""
    row_index: int = 0

    attributes: dict[str, Any] = Field(
        default_factory=dict, description="All normalized raw columns of the source row."
    )

    def has_network_identity(self) -> bool:
        return bool(self.ip_address or self.mac_address)


class MatchCandidate(BaseModel):
    """One engineering record paired with one discovery record."""

    engineering: AssetRecord
    discovery: AssetRecord
    engineering_index: int
    discovery_index: int
    match_type: MatchType
    confidence: int = Field(..., ge=0, le=100)


class ReconciliationResult(BaseModel):
    """Output of one reconciliation run."""

    matched: list[MatchCandidate] = Field(default_factory=list)
    blind_spots: list[AssetRecord] = Field(default_factory=list)
    orphans: list[AssetRecord] = Field(default_factory=list)
    coverage_percentage: int = 0
    outcome: ReconcileOutcome = ReconcileOutcome.COMPLETE
    strategies: list[MatchType] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.outcome == ReconcileOutcome.COMPLETE

    def match_type_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for m in self.matched:
            counts[m.match_type.value] = counts.get(m.match_type.value, 0) + 1
        return counts


class SecurityClassification(BaseModel):
    tier: int = Field(..., ge=1, le=3)
    classification: str
    security_required: SecurityRequirement
    rationale: str


class CrossValidation(BaseModel):
    status: ValidationStatus
    confidence: ValidationConfidence
    agreement_count: int = 0
    checks: dict[str, bool] = Field(default_factory=dict)
    reason: str = ""


class InventoryEntry(BaseModel):
    """One row of the unified inventory (a matched asset or a blind spot)."""

    tag_id: str
    ip_address: str = ""
    hostname: str = ""
    mac_address: str = ""
    plant: str = ""
    unit: str = ""
    device_type: str = ""
    manufacturer: str = ""
    model: str = ""
    criticality: str = ""
    last_seen: str = ""
    is_managed: bool = False
    vulnerabilities: int = 0
    cve_count: int = 0
    last_patch: str = ""
    match_type: MatchType = MatchType.NONE
    match_confidence: int = 0
    classification: Optional[SecurityClassification] = None
    validation: Optional[CrossValidation] = None
    firmware_status: FirmwareStatus = FirmwareStatus.UNKNOWN
    months_overdue: int = 0
    phs: Optional[int] = None
    engineering_source: str = ""
    engineering_row: Optional[int] = None
    discovery_source: str = ""
    discovery_row: Optional[int] = None
    security_source: str = ""
