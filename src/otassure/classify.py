"""Security-tier classification, cross-validation and review queues.

Tier 1 assets are critical control-system nodes that MUST be secured, tier 2
assets are networkable and SHOULD be secured, tier 3 assets are passive
instruments kept for inventory only.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Sequence

from pydantic import BaseModel, Field
from rapidfuzz import fuzz, process

from .schema import (
    AssetRecord,
    CrossValidation,
    InventoryEntry,
    MatchType,
    SecurityClassification,
    SecurityRequirement,
    ValidationConfidence,
    ValidationStatus,
)

TIER1_KEYWORDS = (
    "plc", "dcs", "hmi", "scada", "rtu", "controller",
    "server", "workstation", "historian", "switch", "router", "firewall",
)
TIER2_KEYWORDS = (
    "smart", "ip", "ethernet", "profinet", "modbus", "dnp3",
    "bacnet", "camera", "analyzer", "vfd", "drive",
)
TIER3_KEYWORDS = (
    "4-20", "analog", "transmitter", "pressure", "temperature",
    "flow", "level", "valve", "sensor", "gauge", "instrument",
)

CRITICAL_LABEL = "Critical Network Asset"
NETWORKABLE_LABEL = "Networkable Device"
PASSIVE_LABEL = "Passive/Analog Device"

LOW_CONFIDENCE_THRESHOLD = 70
SUGGESTION_SCORE_CUTOFF = 85

REVIEW_LIMITS = {
    "low_confidence_matches": 50,
    "suspicious_classifications": 30,
    "critical_orphans": 30,
    "unexpected_blind_spots": 30,
    "suggested_matches": 30,
}


def _contains_any(text: str, keywords: Sequence[str]) -> bool:
    return any(kw in text for kw in keywords)


def classify_asset(record: AssetRecord) -> SecurityClassification:
    """Assign a security tier to one record; rules are tried top-down, first match wins."""
    device_type = record.device_type.lower()
    networkable = record.has_network_identity()

    if _contains_any(device_type, TIER1_KEYWORDS):
        return SecurityClassification(
            tier=1,
            classification=CRITICAL_LABEL,
            security_required=SecurityRequirement.MUST,
            rationale=f'Device type "{record.device_type}" is a critical control system',
        )

    if networkable or _contains_any(device_type, TIER2_KEYWORDS):
        return SecurityClassification(
            tier=2,
            classification=NETWORKABLE_LABEL,
            security_required=SecurityRequirement.SHOULD,
            rationale=(
                "Has IP/MAC address, network attack surface"
                if networkable
                else f'Device type "{record.device_type}" typically has network connectivity'
            ),
        )

    if _contains_any(device_type, TIER3_KEYWORDS):
        return SecurityClassification(
            tier=3,
            classification=PASSIVE_LABEL,
            security_required=SecurityRequirement.NONE,
            rationale=f'Device type "{record.device_type}" is a passive field instrument',
        )

    # Fallback.  A networkable record was already caught by the tier 2 rule.
    return SecurityClassification(
        tier=3,
        classification=PASSIVE_LABEL,
        security_required=SecurityRequirement.NONE,
        rationale="No network connectivity, inventory only",
    )


def cross_validate(
    engineering: AssetRecord, discovery: Optional[AssetRecord]
) -> CrossValidation:
    """
    Count how many of five fields agree between the two sides of a match.

    Agreement on three or more fields verifies the match, one or two is a
    partial confirmation, none makes it suspicious.  Without a discovery side
    there is nothing to validate against.
    """
    if discovery is None:
        return CrossValidation(
            status=ValidationStatus.UNVALIDATED,
            confidence=ValidationConfidence.LOW,
            reason="No discovery data to validate against",
        )

    eng, disc = engineering, discovery
    checks = {
        "tag_id": bool(eng.tag_id and disc.tag_id and eng.tag_id == disc.tag_id),
        "ip_address": bool(eng.ip_address and disc.ip_address and eng.ip_address == disc.ip_address),
        "hostname": bool(
            eng.hostname and disc.hostname and eng.hostname.lower() == disc.hostname.lower()
        ),
        "device_type": bool(
            eng.device_type
            and disc.device_type
            and disc.device_type.lower()[:4] in eng.device_type.lower()
        ),
        "manufacturer": bool(
            eng.manufacturer
            and disc.manufacturer
            and eng.manufacturer.lower() == disc.manufacturer.lower()
        ),
    }
    agreement = sum(checks.values())

    if agreement >= 3:
        status, confidence = ValidationStatus.VERIFIED, ValidationConfidence.HIGH
    elif agreement >= 1:
        status, confidence = ValidationStatus.PARTIAL, ValidationConfidence.MEDIUM
    else:
        status, confidence = ValidationStatus.SUSPICIOUS, ValidationConfidence.LOW

    return CrossValidation(
        status=status,
        confidence=confidence,
        agreement_count=agreement,
        checks=checks,
        reason=f"{agreement} of {len(checks)} fields agree between engineering and discovery",
    )


# ----------------------------------------------------------------------
# Review queues
# ----------------------------------------------------------------------

class ReviewStatus(str, Enum):
    PENDING_REVIEW = "PENDING_REVIEW"
    COMPLETE = "COMPLETE"


class SuggestedMatch(BaseModel):
    """A likely pairing for a human to confirm.  Never counted as a match."""

    blind_spot_tag: str
    orphan_tag: str
    orphan_ip: str = ""
    score: float


class ReviewItems(BaseModel):
    low_confidence_matches: list[InventoryEntry] = Field(default_factory=list)
    suspicious_classifications: list[InventoryEntry] = Field(default_factory=list)
    critical_orphans: list[AssetRecord] = Field(default_factory=list)
    unexpected_blind_spots: list[AssetRecord] = Field(default_factory=list)
    suggested_matches: list[SuggestedMatch] = Field(default_factory=list)

    @property
    def status(self) -> ReviewStatus:
        queues = (
            self.low_confidence_matches,
            self.suspicious_classifications,
            self.critical_orphans,
            self.unexpected_blind_spots,
            self.suggested_matches,
        )
        return ReviewStatus.PENDING_REVIEW if any(queues) else ReviewStatus.COMPLETE

    def counts(self) -> dict[str, int]:
        return {name: len(getattr(self, name)) for name in REVIEW_LIMITS}


def suggest_matches(
    blind_spots: Sequence[AssetRecord], orphans: Sequence[AssetRecord]
) -> list[SuggestedMatch]:
    """For each blind spot with a tag, find the most similar orphan tag."""
    candidates = {j: o.tag_id for j, o in enumerate(orphans) if o.tag_id}
    suggestions: list[SuggestedMatch] = []
    if not candidates:
        return suggestions

    for record in blind_spots:
        if not record.tag_id:
            continue
        best = process.extractOne(
            record.tag_id,
            candidates,
            scorer=fuzz.ratio,
            score_cutoff=SUGGESTION_SCORE_CUTOFF,
        )
        if best:
            orphan_tag, score, j = best
            suggestions.append(
                SuggestedMatch(
                    blind_spot_tag=record.tag_id,
                    orphan_tag=orphan_tag,
                    orphan_ip=orphans[j].ip_address,
                    score=round(score, 1),
                )
            )
        if len(suggestions) >= REVIEW_LIMITS["suggested_matches"]:
            break
    return suggestions


def identify_review_items(
    inventory: Sequence[InventoryEntry],
    blind_spots: Sequence[AssetRecord],
    orphans: Sequence[AssetRecord],
) -> ReviewItems:
    """
    Collect the items a human should look at before trusting the inventory.

    Args:
        inventory: Classified and validated inventory entries.  Only matched
            entries are considered for the match-level queues.
        blind_spots: Engineering records with no discovery match.
        orphans: Discovery records with no engineering match.

    Returns:
        ReviewItems, each queue truncated to its REVIEW_LIMITS size.
    """
    matched = [e for e in inventory if e.match_type != MatchType.NONE]

    low_confidence = [
        e
        for e in matched
        if (e.validation is not None and e.validation.confidence == ValidationConfidence.LOW)
        or e.match_confidence < LOW_CONFIDENCE_THRESHOLD
    ]
    suspicious = [
        e
        for e in matched
        if e.classification is not None and e.classification.tier == 3 and e.ip_address
    ]
    critical_orphans = [o for o in orphans if classify_asset(o).tier <= 2]
    unexpected = [b for b in blind_spots if b.ip_address and classify_asset(b).tier == 1]

    limits = REVIEW_LIMITS
    return ReviewItems(
        low_confidence_matches=low_confidence[: limits["low_confidence_matches"]],
        suspicious_classifications=suspicious[: limits["suspicious_classifications"]],
        critical_orphans=critical_orphans[: limits["critical_orphans"]],
        unexpected_blind_spots=unexpected[: limits["unexpected_blind_spots"]],
        suggested_matches=suggest_matches(blind_spots, orphans),
    )
