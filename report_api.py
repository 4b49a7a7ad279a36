"""
Quality Report API

Read-only HTTP view over a checkpoint directory: recorded checkpoints,
progress between them and the per-run snapshots. The API never runs
criteria and never writes to the ledger.
"""

import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

import config
from structured_logging import configure_logging
from tracking.checkpoint_recorder import list_snapshots, load_snapshot
from tracking.progress_analyzer import analyze, read_accuracy_history, read_ledger

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


# Request tracking utilities
def generate_request_id() -> str:
    """Generate unique request ID for tracing across systems"""
    return f"req_{uuid.uuid4().hex[:12]}"


def get_request_id_from_headers(request: Request) -> str:
    """Get or generate request ID for tracking"""
    request_id = request.headers.get("x-request-id") or request.headers.get("x-trace-id")
    return request_id or generate_request_id()


class HealthResponse(BaseModel):
    request_id: str = Field(description="Unique request identifier for tracing", examples=["req_a1b2c3d4e5f6"])
    status: str = Field(description="Service health status", examples=["healthy"])
    service: str = Field(description="Service name", examples=["quality-report-api"])
    timestamp: str = Field(description="Current timestamp", examples=["2025-10-06T18:30:00.000+00:00"])
    version: str = Field(description="Service version", examples=[API_VERSION])
    ledger_present: bool = Field(description="Whether the ledger file exists")


class CheckpointSummary(BaseModel):
    timestamp: str = Field(description="Run timestamp shared by every row of the checkpoint")
    total_layers: int
    layers_passing_all: int = Field(description="Layers passing every non-skipped criterion")
    total_bugs: int = Field(description="Failed criteria across all layers")
    pass_rate: float = Field(description="Percentage of layers passing all criteria")


class CheckpointListResponse(BaseModel):
    request_id: str
    checkpoints: List[CheckpointSummary]


class ProgressResponse(BaseModel):
    request_id: str
    checkpoints: List[CheckpointSummary]
    diffs: List[Dict[str, Any]] = Field(description="Regressions and progressions between consecutive checkpoints")
    trend: Optional[Dict[str, Any]] = Field(None, description="First-to-latest comparison, None below two checkpoints")
    accuracy_history: List[Dict[str, Any]] = Field(
        default_factory=list, description="Per-run agreement of results with the baseline expectations"
    )
    accuracy_trend: Optional[Dict[str, Any]] = Field(
        None, description="First-to-latest FULL run accuracy comparison, None below two FULL runs"
    )


class SnapshotListResponse(BaseModel):
    request_id: str
    snapshots: List[str] = Field(description="Snapshot filenames, oldest first")


def create_app(checkpoint_dir: Optional[str] = None, ledger_filename: Optional[str] = None,
               accuracy_filename: Optional[str] = None) -> FastAPI:
    """Build the API over one checkpoint directory"""
    checkpoint_dir = checkpoint_dir or config.CHECKPOINT_DIR
    ledger_path = os.path.join(checkpoint_dir, ledger_filename or config.LEDGER_FILENAME)
    accuracy_path = os.path.join(checkpoint_dir, accuracy_filename or config.ACCURACY_LEDGER_FILENAME)

    app = FastAPI(
        title="Layer Quality Report API",
        description="""
        **Layer Quality Report API** for the regression-tracking ledger.

        - `/checkpoints`: one summary per recorded batch run
        - `/progress`: regressions, progressions, overall trend and test accuracy history
        - `/snapshots`: full per-run results, including criterion messages
        """,
        version=API_VERSION,
    )

    def ledger_rows() -> List[Dict[str, str]]:
        try:
            return read_ledger(ledger_path)
        except FileNotFoundError:
            return []

    @app.get("/health", response_model=HealthResponse, summary="Health Check", tags=["Health"])
    async def health_check(request: Request):
        return {
            "request_id": get_request_id_from_headers(request),
            "status": "healthy",
            "service": "quality-report-api",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": API_VERSION,
            "ledger_present": os.path.exists(ledger_path),
        }

    @app.get("/checkpoints", response_model=CheckpointListResponse, summary="Recorded Checkpoints",
             tags=["Checkpoints"])
    async def get_checkpoints(request: Request):
        request_id = get_request_id_from_headers(request)
        report = analyze(ledger_rows())

        logger.info(f"Served {len(report.checkpoints)} checkpoints", extra={"request_id": request_id})
        return {
            "request_id": request_id,
            "checkpoints": [checkpoint.to_dict() for checkpoint in report.checkpoints],
        }

    @app.get("/progress", response_model=ProgressResponse, summary="Progress Report", tags=["Checkpoints"])
    async def get_progress(request: Request):
        """
        **Progress Report**

        Layers are compared only when present in both checkpoints of a pair.
        """
        request_id = get_request_id_from_headers(request)
        report = analyze(ledger_rows(), read_accuracy_history(accuracy_path))

        return {"request_id": request_id, **report.to_dict()}

    @app.get("/snapshots", response_model=SnapshotListResponse, summary="Snapshot Index", tags=["Snapshots"])
    async def get_snapshots(request: Request):
        return {
            "request_id": get_request_id_from_headers(request),
            "snapshots": list_snapshots(checkpoint_dir),
        }

    @app.get("/snapshots/{name}", summary="Snapshot Detail", tags=["Snapshots"])
    async def get_snapshot(name: str, request: Request):
        request_id = get_request_id_from_headers(request)

        try:
            snapshot = load_snapshot(checkpoint_dir, name)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except FileNotFoundError:
            logger.warning(f"Snapshot {name} not found", extra={"request_id": request_id})
            raise HTTPException(status_code=404, detail=f"Snapshot '{name}' not found")

        return {"request_id": request_id, "snapshot": snapshot}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    configure_logging("quality-report-api", config.LOG_LEVEL)
    uvicorn.run(app, host="0.0.0.0", port=config.REPORT_API_PORT, log_level="info")
