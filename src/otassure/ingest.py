"""Read CSV exports into AssetRecords.

Exports arrive as raw text (API uploads) or files (CLI).  Delimiters vary by
tool and locale, so the dialect is sniffed before handing the text to pandas.
Every column is read as a string; typing happens in the cleaner.

Several files of the same kind are merged with de-duplication, and files of
unknown kind are routed by their headers.
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Mapping, Optional, Sequence

import pandas as pd
from pydantic import BaseModel

from .cleaner import AssetDataframeCleaner, default_cleaner
from .schema import AssetRecord, SourceType

_DELIMITERS = ",;\t|"

ENGINEERING_INDICATORS = ("tag_id", "tag", "asset_tag", "p&id", "pid", "loop", "instrument")
DISCOVERY_INDICATORS = ("last_seen", "discovered", "scan", "network", "mac_address", "ot_protocol")
SECURITY_INDICATORS = ("vulnerability", "cve", "patch", "cvss", "exploit", "firewall")
ENGINEERING_FILENAME_HINTS = ("engineering", "baseline")
DISCOVERY_FILENAME_HINTS = ("discovery", "claroty")


class IngestError(ValueError):
    """Raised when an upload cannot be parsed as CSV."""


class SourceFile(BaseModel):
    """One uploaded export."""

    filename: str
    content: str


def _strip_excel_hint(text: str) -> str:
    # Some exports start with an Excel hint line: sep=;
    text = text.lstrip("\ufeff").strip()
    if text.lower().startswith("sep="):
        text = "\n".join(text.splitlines()[1:]).lstrip()
    return text


def _sniff_delimiter(sample: str) -> str:
    try:
        dialect = csv.Sniffer().sniff(sample[:4096], delimiters=_DELIMITERS)
        return dialect.delimiter
    except csv.Error:
        return ","


def parse_csv_text(text: str) -> pd.DataFrame:
    """
    Parse CSV text into an all-string DataFrame.

    Blank cells become "" rather than NaN.  Empty input gives an empty
    DataFrame.

    Raises:
        IngestError: If pandas cannot tokenize the text.
    """
    text = _strip_excel_hint(text or "")
    if not text:
        return pd.DataFrame()

    delimiter = _sniff_delimiter(text)
    try:
        df = pd.read_csv(
            io.StringIO(text),
            sep=delimiter,
            dtype=str,
            keep_default_na=False,
            skipinitialspace=True,
        )
    except pd.errors.EmptyDataError:
        return pd.DataFrame()
    except pd.errors.ParserError as e:
        raise IngestError(f"Could not parse CSV: {e}") from e

    df.columns = [str(c).strip() for c in df.columns]
    logging.debug(f"Parsed CSV with delimiter {delimiter!r}: shape {df.shape}")
    return df


def detect_source_type(headers: Iterable[str], filename: str = "") -> SourceType:
    """
    Guess what kind of export a file is from its column names.

    Header indicators are checked as substrings in the order engineering,
    discovery, security; the filename is only consulted when no header
    matches.
    """
    lowered = [str(h).strip().lower() for h in headers]

    def _hit(indicators: Sequence[str]) -> bool:
        return any(ind in h for h in lowered for ind in indicators)

    if _hit(ENGINEERING_INDICATORS):
        return SourceType.ENGINEERING
    if _hit(DISCOVERY_INDICATORS):
        return SourceType.DISCOVERY
    if _hit(SECURITY_INDICATORS):
        return SourceType.SECURITY

    name = filename.lower()
    if any(hint in name for hint in ENGINEERING_FILENAME_HINTS):
        return SourceType.ENGINEERING
    if any(hint in name for hint in DISCOVERY_FILENAME_HINTS):
        return SourceType.DISCOVERY
    return SourceType.OTHER


def read_records(
    text: str, source_id: str, cleaner: Optional[AssetDataframeCleaner] = None
) -> list[AssetRecord]:
    """Parse one CSV text and normalize its rows."""
    df = parse_csv_text(text)
    if df.empty:
        logging.warning(f"No rows in '{source_id}'.")
        return []
    return (cleaner or default_cleaner()).clean_dataframe(df, source_id)


def dedup_key(record: AssetRecord) -> str:
    """First non-empty of tag id, IP address and hostname; "" when none is set."""
    return record.tag_id or record.ip_address or record.hostname.lower()


def merge_sources(
    files: Sequence[SourceFile],
    source_type: SourceType,
    cleaner: Optional[AssetDataframeCleaner] = None,
) -> list[AssetRecord]:
    """
    Normalize several exports of one kind into a single de-duplicated list.

    The first record seen for a key wins.  Records without any key cannot be
    compared and are always kept.

    Args:
        files (Sequence[SourceFile]): Exports, in upload order.
        source_type (SourceType): Kind of the exports, used in each source_id.

    Returns:
        list[AssetRecord]: Unique records, in upload order.
    """
    logging.info(f"Merging {len(files)} {source_type.value} file(s)")
    merged: list[AssetRecord] = []
    seen: set[str] = set()
    for f in files:
        records = read_records(f.content, f"{source_type.value}:{f.filename}", cleaner)
        logging.info(f"{f.filename}: {len(records)} rows")
        for record in records:
            key = dedup_key(record)
            if key and key in seen:
                continue
            if key:
                seen.add(key)
            merged.append(record)
    logging.info(f"{source_type.value}: {len(merged)} unique assets after deduplication")
    return merged


@dataclass
class RoutedSources:
    """Records grouped by kind after merging and auto-detection."""

    engineering: list[AssetRecord] = field(default_factory=list)
    discovery: list[AssetRecord] = field(default_factory=list)
    security: list[AssetRecord] = field(default_factory=list)
    other: list[AssetRecord] = field(default_factory=list)
    files: dict[str, int] = field(default_factory=dict)
    detected: dict[str, str] = field(default_factory=dict)

    def bucket(self, source_type: SourceType) -> list[AssetRecord]:
        return {
            SourceType.ENGINEERING: self.engineering,
            SourceType.DISCOVERY: self.discovery,
            SourceType.SECURITY: self.security,
            SourceType.OTHER: self.other,
        }[source_type]

    def counts(self) -> dict[str, int]:
        return {
            SourceType.ENGINEERING.value: len(self.engineering),
            SourceType.DISCOVERY.value: len(self.discovery),
            SourceType.SECURITY.value: len(self.security),
            SourceType.OTHER.value: len(self.other),
        }


def route_sources(
    sources: Mapping[SourceType, Sequence[SourceFile]],
    cleaner: Optional[AssetDataframeCleaner] = None,
) -> RoutedSources:
    """
    Merge typed uploads and auto-detect the kind of the "other" uploads.

    Detected files are appended to the matching bucket without
    de-duplication against it.
    """
    routed = RoutedSources()
    for source_type in (SourceType.ENGINEERING, SourceType.DISCOVERY, SourceType.SECURITY):
        files = list(sources.get(source_type, ()))
        if files:
            routed.bucket(source_type).extend(merge_sources(files, source_type, cleaner))
            routed.files[source_type.value] = len(files)

    others = list(sources.get(SourceType.OTHER, ()))
    for f in others:
        df = parse_csv_text(f.content)
        detected = detect_source_type(df.columns, f.filename)
        logging.info(f"Auto-detected {f.filename} as {detected.value}")
        routed.detected[f.filename] = detected.value
        if df.empty:
            continue
        records = (cleaner or default_cleaner()).clean_dataframe(df, f"{detected.value}:{f.filename}")
        routed.bucket(detected).extend(records)
    if others:
        routed.files[SourceType.OTHER.value] = len(others)

    logging.info(f"Merged totals: {routed.counts()} from files {routed.files}")
    return routed


def load_assets_csv(path: str | Path, source_id: Optional[str] = None) -> list[AssetRecord]:
    """Load one CSV file from disk into AssetRecords."""
    path = Path(path)
    text = path.read_text(encoding="utf-8-sig")
    return read_records(text, source_id or path.name)
