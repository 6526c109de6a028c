"""
FastAPI routes for the merchant store and categorization runs.
Thin API layer over ConfidenceStore, UsageTracker and CategorizationService.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from core.config import get_settings
from core.db import ConfidenceStore
from core.exceptions import (
    ConfigurationError,
    DataNotFoundError,
    PersistenceError,
    ValidationError,
)
from core.logger import setup_logger
from core.schema import CorrectionRequest, MerchantHistory, MerchantRule
from core.usage import UsageTracker
from services.categorization_service import CategorizationService
from services.factory import build_service, build_store, build_usage_tracker

logger = setup_logger(__name__)

app = FastAPI(
    title="Transaction Auto-Categorizer",
    description="Merchant-learning categorization of budgeting ledger transactions",
    version="1.0.0"
)

# In-memory job storage, lost on restart
jobs: Dict[str, Dict[str, Any]] = {}

# Runs share the merchant store and usage file, so only one may be active
ACTIVE_JOB_STATUSES = ("queued", "processing")

_store: Optional[ConfidenceStore] = None
_tracker: Optional[UsageTracker] = None


def get_store() -> ConfidenceStore:
    global _store
    if _store is None:
        _store = build_store(get_settings())
    return _store


def get_usage_tracker() -> UsageTracker:
    global _tracker
    if _tracker is None:
        _tracker = build_usage_tracker(get_settings())
    return _tracker


def get_service_builder() -> Callable[[], CategorizationService]:
    return build_service


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    logger.error(f"Merchant store error on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=503, content={"detail": exc.message})


@app.get("/health")
def health_check(store: ConfidenceStore = Depends(get_store)):
    """Health check endpoint."""
    return {
        "service": "categorizer",
        "version": "1.0.0",
        **store.check_health(),
    }


@app.get("/merchants/suggestions")
def merchant_suggestions(min_confidence: float = 80, store: ConfidenceStore = Depends(get_store)):
    return {"suggestions": store.get_merchant_suggestions(min_confidence)}


@app.get("/merchants/{merchant_name}/history", response_model=MerchantHistory)
def merchant_history(merchant_name: str, store: ConfidenceStore = Depends(get_store)):
    """Learned category history for one merchant."""
    return store.get_merchant_history(merchant_name)


@app.get("/merchants/{merchant_name}/confidence")
def merchant_confidence(merchant_name: str, category: str, store: ConfidenceStore = Depends(get_store)):
    return {
        "merchant_name": merchant_name,
        "category": category,
        **store.get_merchant_confidence(merchant_name, category),
    }


@app.post("/merchants/corrections")
def record_correction(correction: CorrectionRequest, store: ConfidenceStore = Depends(get_store)):
    """
    Record a human correction of a prior categorization.

    Returns:
        Old and new confidence scores
    """
    try:
        return store.record_correction(
            correction.merchant_name,
            correction.old_category,
            correction.new_category,
        )
    except DataNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)


@app.get("/activity")
def recent_activity(limit: int = 20, store: ConfidenceStore = Depends(get_store)):
    return {"activity": store.get_recent_activity(limit)}


@app.get("/stats")
def stats(store: ConfidenceStore = Depends(get_store)):
    return store.get_stats()


@app.get("/rules", response_model=List[MerchantRule])
def export_rules(min_confidence: float = 70, store: ConfidenceStore = Depends(get_store)):
    return store.export_merchant_rules(min_confidence)


@app.post("/rules")
def import_rules(rules: List[MerchantRule], store: ConfidenceStore = Depends(get_store)):
    return store.import_merchant_rules(rules)


@app.get("/usage")
def usage(tracker: UsageTracker = Depends(get_usage_tracker)):
    """Current usage counters and limits per provider."""
    return tracker.snapshot()


def run_job(job_id: str, builder: Callable[[], CategorizationService]) -> None:
    """
    Background task running one categorization pass.

    Args:
        job_id: Unique job identifier
        builder: Factory for a wired CategorizationService
    """
    try:
        jobs[job_id]["status"] = "processing"
        jobs[job_id]["message"] = "Categorizing unapproved transactions..."

        summary = builder().run()

        jobs[job_id]["status"] = "completed"
        jobs[job_id]["message"] = "Run completed successfully"
        jobs[job_id]["result"] = summary.model_dump(mode="json")
        logger.info(f"Job {job_id} completed successfully")

    except ConfigurationError as e:
        logger.error(f"Job {job_id} failed with configuration error: {e.message}")
        jobs[job_id]["status"] = "failed"
        jobs[job_id]["message"] = f"Run failed: {e.message}"
        jobs[job_id]["error"] = e.message
        jobs[job_id]["error_details"] = e.details

    except Exception as e:
        logger.error(f"Job {job_id} failed with unexpected error: {e}", exc_info=True)
        jobs[job_id]["status"] = "failed"
        jobs[job_id]["message"] = f"Run failed: {str(e)}"
        jobs[job_id]["error"] = str(e)


@app.post("/runs", status_code=202)
def start_run(
    background_tasks: BackgroundTasks,
    builder: Callable[[], CategorizationService] = Depends(get_service_builder),
):
    """
    Start a categorization run in the background.

    Returns:
        202 Accepted with job_id for status polling, 409 while another run is active
    """
    active = [key for key, job in jobs.items() if job.get("status") in ACTIVE_JOB_STATUSES]
    if active:
        logger.warning(f"Run rejected, job {active[0]} is still active")
        raise HTTPException(status_code=409, detail=f"Run {active[0]} is still in progress")

    job_id = str(uuid.uuid4())
    jobs[job_id] = {
        "job_id": job_id,
        "status": "queued",
        "message": "Run queued",
        "created_at": datetime.now(timezone.utc).isoformat(),
    }
    background_tasks.add_task(run_job, job_id, builder)
    logger.info(f"Job {job_id} queued")

    return {
        "job_id": job_id,
        "status": "accepted",
        "message": "Run started. Use job_id to check status."
    }


@app.get("/runs/{job_id}")
def get_run_status(job_id: str):
    """Get status of a categorization run."""
    if job_id not in jobs:
        raise HTTPException(status_code=404, detail="Job not found")

    job = jobs[job_id]
    response = {
        "job_id": job_id,
        "status": job["status"],
        "message": job["message"],
        "created_at": job.get("created_at"),
    }

    if job["status"] == "completed" and "result" in job:
        response["result"] = job["result"]

    if job["status"] == "failed":
        response["error"] = job.get("error")
        if "error_details" in job:
            response["error_details"] = job["error_details"]

    return response


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)
