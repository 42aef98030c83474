import json
import logging
import math
import re
import traceback
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping, Optional

import pandas as pd

from ..schema import AssetRecord

DEFAULT_CONFIG = Path(__file__).parent / "config.json"

IDENTITY_FIELDS = ("tag_id", "ip_address", "mac_address", "hostname")


class AssetDataframeCleaner:
    """
    Normalize raw CSV rows from engineering, discovery and scanner exports.

    Column aliases, boolean spellings and defaults are loaded from a JSON
    configuration file, so that a new tool export only needs a config change.
    """

    def __init__(self, config_path: Optional[str] = None) -> None:
        """
        Initialize the cleaner by loading the alias table from a JSON configuration file.

        Args:
            config_path (Optional[str]): Path to the JSON configuration file.
                Defaults to the config.json shipped next to this module.
        """
        path = config_path or str(DEFAULT_CONFIG)
        try:
            with open(path, "r", encoding="utf-8") as file:
                config = json.load(file)
            self.string_fields: dict[str, list[str]] = config.get("string_fields", {})
            self.upper_fields: set[str] = set(config.get("upper_fields", []))
            self.boolean_fields: dict[str, list[str]] = config.get("boolean_fields", {})
            self.integer_fields: dict[str, list[str]] = config.get("integer_fields", {})
            self.defaults: dict[str, str] = config.get("defaults", {})
            self.true_values: set[str] = set(config.get("true_values", []))
            logging.info("Field aliases loaded successfully from JSON.")
        except FileNotFoundError:
            logging.error(f"Configuration file '{path}' not found.")
            raise
        except json.JSONDecodeError as e:
            logging.error(f"Error decoding JSON configuration file '{path}': {e}")
            raise

    @staticmethod
    def normalize_key(key: Any) -> str:
        """Lower-case a raw column name and underscore its whitespace and hyphens."""
        return re.sub(r"\s+|-", "_", str(key if key is not None else "").strip().lower())

    @staticmethod
    def clean_text(value: Any) -> str:
        """Return a trimmed string, or "" for missing values."""
        if value is None:
            return ""
        if isinstance(value, float) and pd.isna(value):
            return ""
        return str(value).strip()

    def normalize_row(self, row: Mapping[Any, Any]) -> dict[str, Any]:
        """Rename every key to its normalized form and trim string values."""
        norm: dict[str, Any] = {}
        for key, value in (row or {}).items():
            norm[self.normalize_key(key)] = value.strip() if isinstance(value, str) else value
        return norm

    def first_value(self, norm: Mapping[str, Any], aliases: list[str]) -> str:
        """Return the first non-empty value among `aliases`, or ""."""
        for alias in aliases:
            text = self.clean_text(norm.get(alias))
            if text:
                return text
        return ""

    def first_raw(self, norm: Mapping[str, Any], aliases: list[str]) -> Any:
        for alias in aliases:
            value = norm.get(alias)
            if self.clean_text(value):
                return value
        return None

    def parse_bool(self, value: Any) -> bool:
        """
        Parse a boolean-looking value permissively.

        True, 1 and the configured spellings (true/True/TRUE/Yes/YES/1) are
        true; everything else, including missing values, is false.
        """
        if value is True:
            return True
        if isinstance(value, bool):
            return False
        if isinstance(value, (int, float)):
            return value == 1
        return isinstance(value, str) and value.strip() in self.true_values

    @staticmethod
    def parse_int(value: Any) -> int:
        """Return the leading integer of a value, or 0."""
        if value is None or isinstance(value, bool):
            return 0
        if isinstance(value, int):
            return value
        if isinstance(value, float):
            return int(value) if math.isfinite(value) else 0
        match = re.match(r"\s*([+-]?\d+)", str(value))
        return int(match.group(1)) if match else 0

    def normalize_record(
        self, row: Mapping[Any, Any], source_id: str, row_index: int = 0
    ) -> AssetRecord:
        """
        Convert one raw row into an AssetRecord.

        Normalization never fails: unknown columns are kept in `attributes`
        and missing canonical fields degrade to "", False or 0.
        """
        norm = self.normalize_row(row)
        fields: dict[str, Any] = {}

        for field, aliases in self.string_fields.items():
            text = self.first_value(norm, aliases) or self.defaults.get(field, "")
            fields[field] = text.upper() if field in self.upper_fields else text

        for field, aliases in self.boolean_fields.items():
            fields[field] = self.parse_bool(self.first_raw(norm, aliases))

        for field, aliases in self.integer_fields.items():
            fields[field] = max(self.parse_int(self.first_raw(norm, aliases)), 0)

        return AssetRecord(
            **fields,
            source_id=source_id,
            row_index=row_index,
            attributes=norm,
        )

    def validate_dataframe(self, df: pd.DataFrame) -> bool:
        """
        Check that the DataFrame has rows and at least one identity column.

        Returns False (and logs a warning) instead of raising: such rows can
        still be reconciled, they just cannot match on identity.
        """
        logging.info(f"Validating DataFrame with shape: {df.shape}")
        if df.empty:
            logging.warning("The input DataFrame is empty.")
            return False

        columns = {self.normalize_key(c) for c in df.columns}
        identity_aliases = {
            alias for field in IDENTITY_FIELDS for alias in self.string_fields.get(field, [])
        }
        if not columns & identity_aliases:
            logging.warning(
                f"No identity column found (tag, IP, MAC, hostname). Found: {sorted(columns)}"
            )
            return False
        return True

    def clean_dataframe(self, df: pd.DataFrame, source_id: str) -> list[AssetRecord]:
        """
        Normalize every row of a raw DataFrame.

        Args:
            df (pd.DataFrame): Raw rows as parsed from one CSV file.
            source_id (str): Provenance label stored on each record.

        Returns:
            list[AssetRecord]: One record per row, in input order.
        """
        try:
            self.validate_dataframe(df)
            records = [
                self.normalize_record(row, source_id, row_index=i)
                for i, row in enumerate(df.to_dict(orient="records"))
            ]
            logging.info(f"Normalized {len(records)} rows from '{source_id}'.")
            return records
        except Exception as e:
            logging.error(f"An error occurred during DataFrame cleaning: {e}")
            logging.debug(traceback.format_exc())
            raise


@lru_cache(maxsize=1)
def default_cleaner() -> AssetDataframeCleaner:
    return AssetDataframeCleaner()


def normalize_record(row: Mapping[Any, Any], source_id: str, row_index: int = 0) -> AssetRecord:
    """Normalize one raw row with the packaged alias table."""
    return default_cleaner().normalize_record(row, source_id, row_index=row_index)
