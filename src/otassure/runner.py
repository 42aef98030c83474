"""Command-line runner for the OT Assurance Twin.

Usage:
    otassure reconcile <engineering_csv> <discovery_csv> [--security <csv>] [--output <dir>]
    otassure serve [--host <host>] [--port <port>]
"""

from __future__ import annotations

import argparse
import csv
import logging
import sys
from pathlib import Path

from .assessment import AssessmentReport, AssessmentRequest, OutputLevel, run_assessment
from .ingest import IngestError, SourceFile
from .metrics import AssessmentMetrics, format_metrics
from .schema import InventoryEntry, SourceType

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"

EXIT_EMPTY_ENGINEERING = 2


# ---------------------------------------------------------------------------
# I/O
# ---------------------------------------------------------------------------

def _source_file(path: Path) -> SourceFile:
    return SourceFile(filename=path.name, content=path.read_text(encoding="utf-8-sig"))


_CSV_COLUMNS = [
    "tag_id", "ip_address", "hostname", "mac_address", "plant", "unit",
    "device_type", "manufacturer", "model", "criticality",
    "match_type", "match_confidence", "tier", "security_required",
    "validation", "firmware_status", "months_overdue", "phs",
    "vulnerabilities", "engineering_source", "discovery_source",
]


def _entry_row(e: InventoryEntry) -> list:
    return [
        e.tag_id, e.ip_address, e.hostname, e.mac_address, e.plant, e.unit,
        e.device_type, e.manufacturer, e.model, e.criticality,
        e.match_type.value, e.match_confidence,
        e.classification.tier if e.classification else "",
        e.classification.security_required.value if e.classification else "",
        e.validation.status.value if e.validation else "",
        e.firmware_status.value, e.months_overdue, e.phs,
        e.vulnerabilities, e.engineering_source, e.discovery_source,
    ]


def _save_reconciliation_csv(report: AssessmentReport, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", newline="", encoding="utf-8") as f:
        w = csv.writer(f)
        w.writerow(_CSV_COLUMNS)
        for e in report.inventory + (report.orphans or []):
            w.writerow(_entry_row(e))


def _save_report_json(report: AssessmentReport, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(report.model_dump_json(indent=2, exclude_none=True), encoding="utf-8")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def cmd_reconcile(args: argparse.Namespace) -> None:
    """Reconcile an engineering baseline against a discovery export."""
    engineering_path = Path(args.engineering_csv)
    discovery_path = Path(args.discovery_csv)

    try:
        sources = {
            SourceType.ENGINEERING: [_source_file(engineering_path)],
            SourceType.DISCOVERY: [_source_file(discovery_path)],
        }
        if args.security:
            sources[SourceType.SECURITY] = [_source_file(Path(p)) for p in args.security]
        request = AssessmentRequest(
            sources=sources,
            threshold_months=args.threshold_months,
            strategies=args.strategy,
            synthetic_fill=args.synthetic_fill,
            industry=args.industry,
            output_level=OutputLevel.PREMIUM,
        )
        report = run_assessment(request)
    except (IngestError, ValueError, OSError) as e:
        raise SystemExit(f"Error: {e}")

    if not report.ok:
        print(report.message, file=sys.stderr)
        sys.exit(EXIT_EMPTY_ENGINEERING)

    print(f"Engineering: {engineering_path.name}")
    print(f"Discovery:   {discovery_path.name}")
    print(f"Industry:    {report.industry}")
    print()
    print(format_metrics(AssessmentMetrics(**report.metrics)))
    if report.review_status is not None:
        print(f"\nReview status: {report.review_status.value}")
    if report.evidence is not None:
        print(f"Evidence hash: {report.evidence.snapshot_hash}")

    if args.output:
        out = Path(args.output)
        recon_path = out / "reconciliation.csv"
        _save_reconciliation_csv(report, recon_path)
        report_path = out / "report.json"
        _save_report_json(report, report_path)
        print(f"\nSaved: {recon_path}, {report_path}")


def cmd_serve(args: argparse.Namespace) -> None:
    """Serve the HTTP API."""
    import uvicorn

    uvicorn.run("otassure.api:app", host=args.host, port=args.port, log_level=args.log_level)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="otassure", description="OT Assurance Twin tools")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug messages")
    sub = parser.add_subparsers(dest="command")

    p_rec = sub.add_parser("reconcile", help="Reconcile engineering against discovery")
    p_rec.add_argument("engineering_csv", help="Path to the engineering baseline CSV")
    p_rec.add_argument("discovery_csv", help="Path to the OT discovery CSV")
    p_rec.add_argument("--security", action="append", help="Path to a security scanner CSV (repeatable)")
    p_rec.add_argument("--strategy", action="append", help="Enable a match strategy (repeatable); defaults when omitted")
    p_rec.add_argument("--synthetic-fill", action="store_true", help="Pair by position when nothing else matched")
    p_rec.add_argument("--threshold-months", type=int, default=18, help="Patch age before firmware is outdated")
    p_rec.add_argument("--industry", help="Industry profile id (default: auto-detect)")
    p_rec.add_argument("--output", help="Directory for reconciliation.csv and report.json")

    p_serve = sub.add_parser("serve", help="Run the HTTP API")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)
    p_serve.add_argument("--log-level", default="info")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format=LOG_FORMAT,
    )

    if args.command == "reconcile":
        cmd_reconcile(args)
    elif args.command == "serve":
        cmd_serve(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
