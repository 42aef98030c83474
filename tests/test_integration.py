"""Integration test: full assessment pipeline and CLI on a small refinery dataset."""

import csv
import json
from datetime import date

import pytest

from otassure.assessment import AssessmentRequest, OutputLevel, run_assessment
from otassure.classify import ReviewStatus
from otassure.ingest import IngestError, SourceFile
from otassure.runner import EXIT_EMPTY_ENGINEERING, main
from otassure.schema import FirmwareStatus, MatchType, ReconcileOutcome, SourceType

TODAY = date(2026, 10, 18)

ENGINEERING_CSV = """Tag ID,Plant,Unit,Device Type,Manufacturer,IP Address,Criticality,Last Patch
PLC-01,North,CDU,PLC,Siemens,10.0.0.10,High,2026-01-15
FIC-101,North,CDU,Flow Transmitter,Emerson,,,
HMI-01,South,Flare,HMI,Rockwell,10.0.0.20,,2024-01-15
"""

DISCOVERY_CSV = """ip_address,hostname,mac_address,last_seen,device_type,manufacturer
10.0.0.10,plc-01,00:1A:2B:3C:4D:01,2026-09-30,PLC,Siemens
10.0.0.20,hmi-01,00:1A:2B:3C:4D:02,2026-09-30,HMI,Rockwell
10.0.0.99,rogue-ws,00:1A:2B:3C:4D:99,2026-10-01,Workstation,Dell
"""

SECURITY_CSV = """ip,cvss,vulnerabilities
10.0.0.10,9.8,4
"""


def make_request(**options):
    sources = {
        SourceType.ENGINEERING: [SourceFile(filename="baseline.csv", content=ENGINEERING_CSV)],
        SourceType.DISCOVERY: [SourceFile(filename="claroty.csv", content=DISCOVERY_CSV)],
        SourceType.SECURITY: [SourceFile(filename="nessus.csv", content=SECURITY_CSV)],
    }
    options.setdefault("industry", "oil-gas")
    return AssessmentRequest(sources=sources, **options)


@pytest.fixture
def report():
    return run_assessment(make_request(output_level=OutputLevel.PREMIUM), today=TODAY)


def by_tag(report):
    return {e.tag_id: e for e in report.inventory}


class TestAssessment:
    def test_reconciliation(self, report):
        assert report.ok
        assert report.industry == "oil-gas"
        assert report.coverage_percentage == 67
        assert report.match_types == {"ip_match": 2}
        assert [e.tag_id for e in report.inventory] == ["PLC-01", "HMI-01", "FIC-101"]
        assert [o.ip_address for o in report.orphans] == ["10.0.0.99"]

    def test_blind_spot_entry(self, report):
        fic = by_tag(report)["FIC-101"]
        assert fic.match_type == MatchType.NONE
        assert fic.match_confidence == 0
        assert fic.firmware_status == FirmwareStatus.MISSING_ON_NETWORK
        assert fic.classification.tier == 3
        # No own criticality: the CDU unit default applies.
        assert fic.criticality == "Critical"
        assert [b.tag_id for b in report.blind_spots] == ["FIC-101"]

    def test_firmware_and_health(self, report):
        entries = by_tag(report)
        assert entries["PLC-01"].firmware_status == FirmwareStatus.OK
        assert entries["PLC-01"].phs == 100
        assert entries["HMI-01"].firmware_status == FirmwareStatus.OUTDATED
        assert entries["HMI-01"].months_overdue == 15
        assert report.orphans[0].firmware_status == FirmwareStatus.ORPHANED_IN_NETWORK

    def test_security_overlay(self, report):
        plc = by_tag(report)["PLC-01"]
        assert plc.vulnerabilities == 4
        assert plc.security_source == "security:nessus.csv"
        assert by_tag(report)["HMI-01"].security_source == ""

    def test_matched_entries_merge_both_sides(self, report):
        plc = by_tag(report)["PLC-01"]
        assert plc.hostname == "plc-01"
        assert plc.mac_address == "00:1A:2B:3C:4D:01"
        assert plc.plant == "North"
        assert plc.engineering_source == "engineering:baseline.csv"
        assert plc.discovery_source == "otDiscovery:claroty.csv"
        assert plc.validation is not None

    def test_metrics_and_evidence(self, report):
        assert report.metrics["n_matched"] == 2
        assert report.metrics["critical_total"] == 3
        assert report.metrics["critical_matched"] == 2
        assert report.evidence.kpis["outdated_critical"] == 1
        assert report.evidence.kpis["orphans_on_network"] == 1
        assert len(report.evidence.snapshot_hash) == 64
        assert set(report.ppi.by_plant) == {"North", "South", "Unknown"}

    def test_review_queue(self, report):
        assert report.review_status == ReviewStatus.PENDING_REVIEW
        assert [o.ip_address for o in report.review.critical_orphans] == ["10.0.0.99"]

    def test_provenance(self, report):
        events = [e.event_type for e in report.provenance.events]
        assert events == [
            "PIPELINE_START",
            "SOURCE_INGESTED",
            "SOURCE_INGESTED",
            "SOURCE_INGESTED",
            "INDUSTRY_SELECTED",
            "MATCHING_COMPLETE",
            "PIPELINE_COMPLETE",
        ]
        ingested = report.provenance.events[1]
        assert ingested.details["source_id"] == "engineering:baseline.csv"
        assert ingested.details["row_count"] == 3
        completed = report.provenance.events[-1]
        assert completed.details["files"] == {"engineering": 1, "otDiscovery": 1, "security": 1}


class TestOptions:
    def test_basic_output_level(self):
        report = run_assessment(make_request(output_level=OutputLevel.BASIC), today=TODAY)
        assert report.inventory
        assert report.blind_spots is None
        assert report.review is None
        assert report.provenance is None

    def test_standard_output_level(self):
        report = run_assessment(make_request(), today=TODAY)
        assert report.review is not None
        assert report.provenance is None

    def test_evidence_is_reproducible(self):
        first = run_assessment(make_request(), today=TODAY)
        second = run_assessment(make_request(), today=TODAY)
        assert [e.model_dump() for e in first.inventory] == [e.model_dump() for e in second.inventory]
        assert first.evidence.kpis == second.evidence.kpis

    def test_threshold_changes_firmware_status(self):
        report = run_assessment(make_request(threshold_months=60), today=TODAY)
        assert by_tag(report)["HMI-01"].firmware_status == FirmwareStatus.OK

    def test_empty_engineering(self):
        request = AssessmentRequest(
            sources={SourceType.DISCOVERY: [SourceFile(filename="d.csv", content=DISCOVERY_CSV)]}
        )
        report = run_assessment(request, today=TODAY)
        assert report.outcome == ReconcileOutcome.EMPTY_ENGINEERING
        assert not report.ok
        assert report.inventory == []

    def test_unknown_industry(self):
        with pytest.raises(ValueError, match="Unknown industry"):
            run_assessment(make_request(industry="space-mining"), today=TODAY)

    def test_unknown_strategy(self):
        with pytest.raises(ValueError, match="Unknown match strategy"):
            run_assessment(make_request(strategies=["telepathy"]), today=TODAY)

    def test_unparseable_upload(self):
        request = AssessmentRequest(
            sources={
                SourceType.ENGINEERING: [
                    SourceFile(filename="bad.csv", content="tag,ip\nA1,10.0.0.1\nB2,10.0.0.2,extra,fields\n")
                ]
            }
        )
        with pytest.raises(IngestError):
            run_assessment(request, today=TODAY)

    def test_other_upload_is_detected(self):
        request = AssessmentRequest(
            sources={
                SourceType.ENGINEERING: [SourceFile(filename="baseline.csv", content=ENGINEERING_CSV)],
                SourceType.OTHER: [SourceFile(filename="scan.csv", content=DISCOVERY_CSV)],
            },
            industry="oil-gas",
        )
        report = run_assessment(request, today=TODAY)
        assert report.coverage_percentage == 67
        assert by_tag(report)["PLC-01"].discovery_source == "otDiscovery:scan.csv"


class TestCli:
    @pytest.fixture
    def files(self, tmp_path):
        eng = tmp_path / "baseline.csv"
        disc = tmp_path / "claroty.csv"
        sec = tmp_path / "nessus.csv"
        eng.write_text(ENGINEERING_CSV, encoding="utf-8")
        disc.write_text(DISCOVERY_CSV, encoding="utf-8")
        sec.write_text(SECURITY_CSV, encoding="utf-8")
        return eng, disc, sec

    def test_reconcile_writes_outputs(self, files, tmp_path, capsys):
        eng, disc, sec = files
        out = tmp_path / "out"

        main(["reconcile", str(eng), str(disc), "--security", str(sec), "--industry", "oil-gas", "--output", str(out)])

        printed = capsys.readouterr().out
        assert "=== OT Assurance Metrics ===" in printed
        assert "Coverage:            67%" in printed
        assert "Evidence hash:" in printed

        with open(out / "reconciliation.csv", newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        assert [r["tag_id"] for r in rows] == ["PLC-01", "HMI-01", "FIC-101", ""]
        assert rows[0]["match_type"] == "ip_match"

        saved = json.loads((out / "report.json").read_text(encoding="utf-8"))
        assert saved["outcome"] == "complete"
        assert saved["provenance"]["events"][0]["event_type"] == "PIPELINE_START"

    def test_empty_engineering_exit_code(self, files, tmp_path):
        _, disc, _ = files
        empty = tmp_path / "empty.csv"
        empty.write_text("Tag ID,Plant\n", encoding="utf-8")

        with pytest.raises(SystemExit) as exc:
            main(["reconcile", str(empty), str(disc)])
        assert exc.value.code == EXIT_EMPTY_ENGINEERING

    def test_unknown_strategy_exits(self, files):
        eng, disc, _ = files
        with pytest.raises(SystemExit) as exc:
            main(["reconcile", str(eng), str(disc), "--strategy", "telepathy"])
        assert "Unknown match strategy" in str(exc.value.code)

    def test_missing_file_exits(self, files, tmp_path):
        _, disc, _ = files
        with pytest.raises(SystemExit) as exc:
            main(["reconcile", str(tmp_path / "absent.csv"), str(disc)])
        assert str(exc.value.code).startswith("Error: ")

    def test_undecodable_file_exits(self, files, tmp_path):
        _, disc, _ = files
        latin = tmp_path / "latin1.csv"
        latin.write_bytes("Tag ID,Plant\nPLC-01,M\xfcnchen\n".encode("latin-1"))
        with pytest.raises(SystemExit) as exc:
            main(["reconcile", str(latin), str(disc)])
        assert str(exc.value.code).startswith("Error: ")

    def test_no_command(self):
        with pytest.raises(SystemExit) as exc:
            main([])
        assert exc.value.code == 1
