"""
OT Assurance Twin HTTP API

Endpoints:
1. Health:
   - Liveness probe
2. Reconciliation:
   - Upload engineering, discovery and security CSV exports as text
   - Get back the unified inventory, scores, review queues and evidence hash
3. Classification:
   - Security-tier classification of raw rows
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from . import __version__
from .assessment import AssessmentReport, AssessmentRequest, OutputLevel, run_assessment
from .classify import classify_asset
from .cleaner import normalize_record
from .ingest import IngestError, SourceFile
from .schema import SecurityClassification, SourceType

logger = logging.getLogger(__name__)

app = FastAPI(
    title="OT Assurance Twin API",
    description="Reconcile engineering baselines against OT network discovery and score the result",
    version=__version__,
)

# ===============================================================================
# PYDANTIC MODELS
# ===============================================================================

class ReconcileRequest(BaseModel):
    """Request model for a reconciliation run."""
    engineering_csv: Optional[str] = Field(None, description="Engineering baseline as CSV text")
    ot_discovery_csv: Optional[str] = Field(None, description="OT network discovery export as CSV text")
    security_csv: Optional[str] = Field(None, description="Security scanner export as CSV text")
    sources: Dict[SourceType, List[SourceFile]] = Field(
        default_factory=dict,
        description="Additional named files by kind; files under 'other' are auto-detected",
    )
    threshold_months: int = Field(18, ge=0, le=600, description="Patch age (months) before firmware counts as outdated")
    strategies: Optional[List[str]] = Field(None, description="Enabled match strategies; defaults when omitted")
    synthetic_fill: bool = Field(False, description="Enable positional pairing when nothing else matched")
    industry: Optional[str] = Field(None, description="Industry profile id; auto-detected when omitted")
    output_level: OutputLevel = Field(OutputLevel.STANDARD, description="basic, standard or premium")

    def to_assessment(self) -> AssessmentRequest:
        sources: Dict[SourceType, List[SourceFile]] = {k: list(v) for k, v in self.sources.items()}
        for source_type, text, filename in (
            (SourceType.ENGINEERING, self.engineering_csv, "engineering.csv"),
            (SourceType.DISCOVERY, self.ot_discovery_csv, "ot_discovery.csv"),
            (SourceType.SECURITY, self.security_csv, "security.csv"),
        ):
            if text:
                sources.setdefault(source_type, []).insert(0, SourceFile(filename=filename, content=text))
        return AssessmentRequest(
            sources=sources,
            threshold_months=self.threshold_months,
            strategies=self.strategies,
            synthetic_fill=self.synthetic_fill,
            industry=self.industry,
            output_level=self.output_level,
        )


class ClassifyRequest(BaseModel):
    """Request model for tier classification."""
    rows: List[Dict[str, Any]] = Field(..., description="Raw rows, column name to value")


class ClassifiedRow(BaseModel):
    tag_id: str
    ip_address: str
    device_type: str
    classification: SecurityClassification


class ClassifyResponse(BaseModel):
    success: bool
    results: List[ClassifiedRow]
    tiers: Dict[str, int]

# ===============================================================================
# ENDPOINTS
# ===============================================================================

@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "version": __version__,
    }


@app.post("/api/reconcile", response_model=AssessmentReport, response_model_exclude_none=True)
def reconcile_sources(request: ReconcileRequest):
    """Reconcile the uploaded exports into a unified, scored inventory."""
    try:
        report = run_assessment(request.to_assessment())
    except IngestError as e:
        logger.warning(f"Rejected upload: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except ValueError as e:
        logger.warning(f"Rejected request: {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("Reconciliation failed")
        raise HTTPException(status_code=500, detail=f"Reconciliation failed: {str(e)}")

    if not report.ok:
        raise HTTPException(status_code=400, detail=report.message)

    logger.info(f"Reconciled with coverage {report.coverage_percentage}%")
    return report


@app.post("/api/classify", response_model=ClassifyResponse)
def classify_rows(request: ClassifyRequest):
    """Assign a security tier to each raw row."""
    results = []
    tiers = {"tier1": 0, "tier2": 0, "tier3": 0}
    for i, row in enumerate(request.rows):
        record = normalize_record(row, "classify", row_index=i)
        classification = classify_asset(record)
        tiers[f"tier{classification.tier}"] += 1
        results.append(
            ClassifiedRow(
                tag_id=record.tag_id,
                ip_address=record.ip_address,
                device_type=record.device_type,
                classification=classification,
            )
        )
    return ClassifyResponse(success=True, results=results, tiers=tiers)
