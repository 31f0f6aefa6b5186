"""
HTTP surface for result ingestion and the review queue.

Thin layer over RunnerIdentityService and ReviewQueueManager:
- POST /api/results/ingest               resolve one raw result
- GET  /api/reviews/pending              pending entries, oldest first
- GET  /api/reviews/{entry_id}           one entry with its raw record
- GET  /api/reviews/{entry_id}/candidates  re-scored candidates
- POST /api/reviews/{entry_id}/resolve   approve or reject an entry
"""

from typing import Any, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from runmatch.db.models import RunnerMatch
from runmatch.db.session import get_db
from runmatch.errors import ReviewConflictError, ReviewEntryNotFoundError, SnapshotDecodeError
from runmatch.runners.identity import RunnerIdentityService
from runmatch.runners.review import ReviewQueueManager
from runmatch.runners.snapshot import OpaqueSnapshot, RawResultRecord

app = FastAPI(title="Runner Matching")


class ResolveRequest(BaseModel):
    """Reviewer decision on a pending entry."""
    decision: Literal["approve", "reject"]
    reviewer_id: str
    # Approve onto this runner instead of the proposed candidate
    runner_id: Optional[int] = None


def _entry_json(entry: RunnerMatch) -> dict[str, Any]:
    return {
        "id": entry.id,
        "status": entry.status,
        "candidate_runner_id": entry.candidate_runner_id,
        "resolved_runner_id": entry.resolved_runner_id,
        "result_id": entry.result_id,
        "match_score": float(entry.match_score),
        "match_reasons": list(entry.match_reasons or []),
        "search_strategy": entry.search_strategy,
        "source_provider": entry.source_provider,
        "source_result_id": entry.source_result_id,
        "race_ref": entry.race_ref,
        "reviewed_by": entry.reviewed_by,
        "reviewed_at": entry.reviewed_at.isoformat() if entry.reviewed_at else None,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


@app.post("/api/results/ingest")
def api_ingest_result(record: RawResultRecord, db: Session = Depends(get_db)):
    """
    Resolve one raw result.

    Malformed records (no name or race reference) get a 422 with the reason;
    re-sending an already imported result returns the original outcome.
    """
    outcome = RunnerIdentityService(db).ingest_raw_result(record)
    if outcome.kind == "rejected":
        raise HTTPException(status_code=422, detail=outcome.reason)

    return JSONResponse({
        "outcome": outcome.kind,
        "runner_id": outcome.runner_id,
        "entry_id": outcome.entry_id,
        "match_score": outcome.match_score,
        "replayed": outcome.replayed,
    })


@app.get("/api/reviews/pending")
def api_pending_reviews(
    db: Session = Depends(get_db),
    provider: Optional[str] = Query(None, description="Source provider"),
    race_ref: Optional[str] = Query(None, description="Race reference"),
    min_score: Optional[float] = Query(None, ge=0, le=100, description="Minimum match score"),
    limit: int = Query(100, ge=1, le=500, description="Max entries"),
):
    """Pending review entries, oldest first."""
    entries = ReviewQueueManager(db).list_pending(
        provider=provider, race_ref=race_ref, min_score=min_score, limit=limit
    )
    return JSONResponse({"entries": [_entry_json(entry) for entry in entries]})


@app.get("/api/reviews/{entry_id}")
def api_review_entry(entry_id: int, db: Session = Depends(get_db)):
    """One review entry with its stored raw record."""
    queue = ReviewQueueManager(db)
    try:
        entry = queue.get_entry(entry_id)
    except ReviewEntryNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))

    snapshot = queue.raw_record(entry_id)
    if isinstance(snapshot, OpaqueSnapshot):
        raw = {"schema": snapshot.schema, "payload": snapshot.payload, "decoded": False}
    else:
        raw = {"schema": entry.raw_schema, "payload": snapshot.model_dump(mode="json"), "decoded": True}

    return JSONResponse({**_entry_json(entry), "raw_record": raw})


@app.get("/api/reviews/{entry_id}/candidates")
def api_review_candidates(entry_id: int, db: Session = Depends(get_db)):
    """Candidates for an entry, re-scored against the current runner table."""
    try:
        candidates = ReviewQueueManager(db).candidates(entry_id)
    except ReviewEntryNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except SnapshotDecodeError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    return JSONResponse({
        "candidates": [
            {
                "runner_id": candidate.runner_id,
                "name": candidate.profile.name,
                "city": candidate.profile.city,
                "state": candidate.profile.state,
                "age": candidate.profile.age,
                "score": candidate.score,
                "reasons": sorted(candidate.reasons),
            }
            for candidate in candidates
        ]
    })


@app.post("/api/reviews/{entry_id}/resolve")
def api_resolve_review(entry_id: int, body: ResolveRequest, db: Session = Depends(get_db)):
    """
    Approve or reject a pending entry.

    The first resolution wins; a second one gets a 409.
    """
    try:
        entry = ReviewQueueManager(db).resolve(
            entry_id, body.decision, body.reviewer_id, runner_id=body.runner_id
        )
    except ReviewEntryNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ReviewConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except SnapshotDecodeError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    return JSONResponse(_entry_json(entry))


if __name__ == "__main__":
    import uvicorn
    from runmatch.config import settings

    uvicorn.run("runmatch.web.main:app", host=settings.api_host, port=settings.api_port)
