"""Industry profiles: detection patterns and criticality defaults.

Industries differ only in data, never in code.  Each profile carries the
regexes used to recognise its exports, the criticality labels that count as
critical, and the default criticality of its process units.
"""

from __future__ import annotations

import json
import logging
import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Optional, Sequence

from pydantic import BaseModel, Field

from .schema import AssetRecord

DEFAULT_PROFILES = Path(__file__).parent / "profiles.json"
PROFILES_ENV = "OTASSURE_PROFILES"

SAMPLE_SIZE = 500
MIN_RELIABLE_SCORE = 10
UNIT_WEIGHT, EQUIPMENT_WEIGHT, TERM_WEIGHT = 3, 2, 1


class IndustryProfile(BaseModel):
    id: str
    name: str
    unit_patterns: list[str] = Field(default_factory=list)
    equipment_patterns: list[str] = Field(default_factory=list)
    term_patterns: list[str] = Field(default_factory=list)
    critical_labels: list[str] = Field(default_factory=list)
    unit_criticality: dict[str, str] = Field(default_factory=dict)

    def is_critical(self, criticality: str) -> bool:
        label = criticality.strip().lower()
        return bool(label) and label in {c.lower() for c in self.critical_labels}


class IndustryScore(BaseModel):
    id: str
    name: str
    score: int
    percentage: int


class IndustryDetection(BaseModel):
    detected: Optional[str] = None
    confidence: int = 0
    reliable: bool = False
    scores: list[IndustryScore] = Field(default_factory=list)
    sample_size: int = 0
    reason: str = ""


class ProfileSet(BaseModel):
    default: IndustryProfile
    industries: dict[str, IndustryProfile]

    def get(self, industry_id: Optional[str]) -> IndustryProfile:
        """Return the named profile, or the default one for None.

        Raises:
            ValueError: If the id names no known industry.
        """
        if not industry_id:
            return self.default
        try:
            return self.industries[industry_id]
        except KeyError:
            known = ", ".join(sorted(self.industries))
            raise ValueError(f"Unknown industry {industry_id!r}; expected one of: {known}") from None


@lru_cache(maxsize=8)
def _read_profiles(path: str) -> ProfileSet:
    try:
        with open(path, "r", encoding="utf-8") as file:
            raw = json.load(file)
    except FileNotFoundError:
        logging.error(f"Profiles file '{path}' not found.")
        raise
    except json.JSONDecodeError as e:
        logging.error(f"Error decoding profiles file '{path}': {e}")
        raise

    industries = {
        industry_id: IndustryProfile(id=industry_id, **body)
        for industry_id, body in raw.get("industries", {}).items()
    }
    logging.info(f"Loaded {len(industries)} industry profiles from {path}")
    return ProfileSet(default=IndustryProfile(**raw["default"]), industries=industries)


def load_profiles(path: Optional[str | Path] = None) -> ProfileSet:
    """Load profiles from `path`, $OTASSURE_PROFILES, or the packaged file, in that order."""
    resolved = path or os.environ.get(PROFILES_ENV) or DEFAULT_PROFILES
    return _read_profiles(str(resolved))


def _search_text(records: Sequence[AssetRecord]) -> str:
    parts = []
    for record in records:
        parts.extend(str(v) for v in record.attributes.values() if isinstance(v, str) and v)
    return " ".join(parts).lower()


def _score(profile: IndustryProfile, text: str) -> int:
    score = 0
    for patterns, weight in (
        (profile.unit_patterns, UNIT_WEIGHT),
        (profile.equipment_patterns, EQUIPMENT_WEIGHT),
        (profile.term_patterns, TERM_WEIGHT),
    ):
        score += sum(weight for p in patterns if re.search(p, text, flags=re.IGNORECASE))
    return score


def detect_industry(
    records: Sequence[AssetRecord],
    min_confidence: int = 30,
    profiles: Optional[ProfileSet] = None,
) -> IndustryDetection:
    """
    Guess the industry of a dataset from the vocabulary of its rows.

    A sample of the first SAMPLE_SIZE records is concatenated and each
    profile pattern counts once when present.  Confidence is the best score's
    share of the total.

    Args:
        records: Normalized records, usually the engineering baseline.
        min_confidence: Minimum confidence (0-100) for a reliable detection.

    Returns:
        IndustryDetection.  `detected` is None unless the detection is reliable.
    """
    profiles = profiles or load_profiles()
    sample = list(records[:SAMPLE_SIZE])
    text = _search_text(sample)

    raw_scores = [(p, _score(p, text)) for p in profiles.industries.values()]
    raw_scores.sort(key=lambda item: item[1], reverse=True)
    total = sum(s for _, s in raw_scores)

    scores = [
        IndustryScore(
            id=p.id,
            name=p.name,
            score=s,
            percentage=round(s / total * 100) if total else 0,
        )
        for p, s in raw_scores
    ]
    if not raw_scores:
        return IndustryDetection(sample_size=len(sample), reason="No industry profiles loaded")

    best, best_score = raw_scores[0]
    confidence = round(best_score / total * 100) if total else 0
    reliable = confidence >= min_confidence and best_score > MIN_RELIABLE_SCORE

    if reliable:
        reason = f"Detected {best.name} with {confidence}% confidence based on terminology patterns"
    elif total == 0:
        reason = "No industry-specific patterns found in data"
    else:
        reason = f"Low confidence ({confidence}%), manual selection recommended"

    logging.info(f"Industry detection: {reason}")
    return IndustryDetection(
        detected=best.id if reliable else None,
        confidence=confidence,
        reliable=reliable,
        scores=scores,
        sample_size=len(sample),
        reason=reason,
    )


def resolve_criticality(record: AssetRecord, profile: IndustryProfile) -> str:
    """The record's own criticality, else the default of its process unit, else ""."""
    if record.criticality:
        return record.criticality
    unit = record.unit.lower()
    if not unit:
        return ""
    for unit_key, criticality in profile.unit_criticality.items():
        if unit_key in unit:
            return criticality
    return ""
