import pytest

from otassure.ingest import (
    IngestError,
    SourceFile,
    dedup_key,
    detect_source_type,
    load_assets_csv,
    merge_sources,
    parse_csv_text,
    route_sources,
)
from otassure.schema import AssetRecord, SourceType


ENGINEERING_CSV = """Tag ID,Plant,Unit,Device Type,Manufacturer,IP Address
FIC-101,North,CDU,Flow Transmitter,Emerson,
PLC-01,North,CDU,PLC,Siemens,10.0.0.10
"""

DISCOVERY_CSV = """ip_address;hostname;mac_address;last_seen;device_type;manufacturer
10.0.0.10;plc-01;00:1a:2b:3c:4d:5e;2026-09-30;PLC;Siemens
10.0.0.99;rogue-ws;00:1a:2b:3c:4d:99;2026-10-01;Workstation;Dell
"""


class TestParse:
    def test_comma(self):
        df = parse_csv_text(ENGINEERING_CSV)
        assert list(df.columns)[:2] == ["Tag ID", "Plant"]
        assert len(df) == 2
        assert df["IP Address"].iloc[0] == ""

    def test_semicolon(self):
        df = parse_csv_text(DISCOVERY_CSV)
        assert "hostname" in df.columns
        assert df["hostname"].iloc[1] == "rogue-ws"

    def test_excel_sep_hint(self):
        df = parse_csv_text("sep=|\ntag|ip\nA1|10.0.0.1\n")
        assert list(df.columns) == ["tag", "ip"]
        assert df["ip"].iloc[0] == "10.0.0.1"

    def test_tab(self):
        df = parse_csv_text("tag\tip\nA1\t10.0.0.1\nB2\t10.0.0.2\n")
        assert len(df) == 2

    def test_empty(self):
        assert parse_csv_text("").empty
        assert parse_csv_text("   \n").empty

    def test_header_only(self):
        df = parse_csv_text("tag,ip\n")
        assert df.empty
        assert list(df.columns) == ["tag", "ip"]

    def test_values_stay_strings(self):
        df = parse_csv_text("tag,vulnerabilities\n007,3\n")
        assert df["tag"].iloc[0] == "007"

    def test_unparseable(self):
        with pytest.raises(IngestError):
            parse_csv_text("tag,ip\nA1,10.0.0.1\nB2,10.0.0.2,extra,fields\n")


class TestDetect:
    def test_engineering_headers(self):
        assert detect_source_type(["Tag", "Plant"]) == SourceType.ENGINEERING
        assert detect_source_type(["loop_number", "service"]) == SourceType.ENGINEERING

    def test_discovery_headers(self):
        assert detect_source_type(["ip_address", "last_seen"]) == SourceType.DISCOVERY
        assert detect_source_type(["MAC_ADDRESS"]) == SourceType.DISCOVERY

    def test_security_headers(self):
        assert detect_source_type(["ip", "cve_id", "cvss"]) == SourceType.SECURITY

    def test_engineering_checked_first(self):
        assert detect_source_type(["tag_id", "last_seen", "cve"]) == SourceType.ENGINEERING

    def test_filename_hints(self):
        assert detect_source_type(["ip"], "plant_baseline.csv") == SourceType.ENGINEERING
        assert detect_source_type(["ip"], "claroty_export.csv") == SourceType.DISCOVERY

    def test_other(self):
        assert detect_source_type(["ip", "owner"], "misc.csv") == SourceType.OTHER


def test_dedup_key():
    """Test that the de-duplication key prefers tag, then IP, then hostname."""
    assert dedup_key(AssetRecord(tag_id="A", ip_address="1")) == "A"
    assert dedup_key(AssetRecord(ip_address="10.0.0.1", hostname="h")) == "10.0.0.1"
    assert dedup_key(AssetRecord(hostname="HMI")) == "hmi"
    assert dedup_key(AssetRecord()) == ""


def test_merge_sources_dedups_across_files():
    """Test merging keeps the first record per key and every keyless record."""
    files = [
        SourceFile(filename="a.csv", content="tag,plant\nA1,North\nB2,North\n,Keyless\n"),
        SourceFile(filename="b.csv", content="tag,plant\nA1,South\nC3,South\n,Keyless\n"),
    ]

    records = merge_sources(files, SourceType.ENGINEERING)

    assert [r.tag_id for r in records] == ["A1", "B2", "", "C3", ""]
    assert records[0].plant == "North"
    assert records[0].source_id == "engineering:a.csv"
    assert records[3].source_id == "engineering:b.csv"


def test_route_sources_detects_other_files():
    """Test that 'other' uploads are routed to the bucket their headers suggest."""
    sources = {
        SourceType.ENGINEERING: [SourceFile(filename="eng.csv", content=ENGINEERING_CSV)],
        SourceType.OTHER: [
            SourceFile(filename="scan.csv", content=DISCOVERY_CSV),
            SourceFile(filename="vulns.csv", content="ip,cvss\n10.0.0.10,9.8\n"),
        ],
    }

    routed = route_sources(sources)

    assert len(routed.engineering) == 2
    assert len(routed.discovery) == 2
    assert len(routed.security) == 1
    assert routed.detected == {"scan.csv": "otDiscovery", "vulns.csv": "security"}
    assert routed.discovery[0].source_id == "otDiscovery:scan.csv"
    assert routed.files == {"engineering": 1, "other": 2}
    assert routed.counts()["otDiscovery"] == 2


def test_load_assets_csv(tmp_path):
    """Test file loading for the CLI."""
    path = tmp_path / "baseline.csv"
    path.write_text(ENGINEERING_CSV, encoding="utf-8")

    records = load_assets_csv(path)

    assert [r.tag_id for r in records] == ["FIC-101", "PLC-01"]
    assert records[1].ip_address == "10.0.0.10"
    assert records[0].source_id == "baseline.csv"
