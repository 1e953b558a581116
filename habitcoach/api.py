# habitcoach/api.py
import os
import time
from datetime import date, datetime
from typing import Optional

from fastapi import FastAPI, APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import select

from .config import settings
from .db import SessionLocal, init_db, reset_db
from .errors import ProgressionError
from .models import WeeklyPerformanceHistory
from .service import ProgressionService
from .weekly_scheduler import start_scheduler, shutdown_scheduler

APP_START = time.time()

app = FastAPI(title="habitcoach progression")
router = APIRouter()

_service: Optional[ProgressionService] = None


def get_service() -> ProgressionService:
    global _service
    if _service is None:
        _service = ProgressionService(SessionLocal)
    return _service


@app.exception_handler(ProgressionError)
async def _progression_error(request: Request, exc: ProgressionError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.on_event("startup")
def on_startup():
    if settings.RESET_DB_ON_STARTUP:
        reset_db()
    else:
        init_db()
    start_scheduler()


@app.on_event("shutdown")
def on_shutdown():
    shutdown_scheduler()

# ──────────────────────────────────────────────────────────────────────────────
# Request bodies
# ──────────────────────────────────────────────────────────────────────────────

class StartProgrammeIn(BaseModel):
    start_date: Optional[date] = None
    display_name: Optional[str] = None


class DailyValueIn(BaseModel):
    pillar: str
    actual: Optional[float] = None
    target: Optional[float] = None
    day: Optional[date] = None
    backfill: bool = False
    source: str = "manual"


class DecisionIn(BaseModel):
    decision: str = Field(..., description="accepted | override_advance | coach_consultation")


class ResolveEscalationIn(BaseModel):
    resolution: str = Field(..., description="advance | extend | reset")
    note: Optional[str] = None

# ──────────────────────────────────────────────────────────────────────────────
# Health
# ──────────────────────────────────────────────────────────────────────────────

@app.get("/health")
def health():
    return {"ok": True, "uptime_seconds": int(time.time() - APP_START)}

# ──────────────────────────────────────────────────────────────────────────────
# Programme + habit data
# ──────────────────────────────────────────────────────────────────────────────

@router.post("/users/{user_id}/programme", status_code=201)
def start_programme(user_id: int, payload: StartProgrammeIn, svc: ProgressionService = Depends(get_service)):
    return svc.start_programme(user_id, start_date=payload.start_date, display_name=payload.display_name)


@router.get("/users/{user_id}/programme")
def get_programme(user_id: int, svc: ProgressionService = Depends(get_service)):
    return svc.get_plan(user_id)


@router.post("/users/{user_id}/daily")
def log_daily(user_id: int, payload: DailyValueIn, svc: ProgressionService = Depends(get_service)):
    day = payload.day or svc.today()
    try:
        rec = svc.data.log_daily_value(
            user_id, day, payload.pillar, payload.actual, payload.target,
            backfill=payload.backfill, source=payload.source,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"day": rec.day.isoformat(), "pillar": rec.pillar, "actual": rec.actual, "target": rec.target}

# ──────────────────────────────────────────────────────────────────────────────
# Weekly assessment
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/users/{user_id}/assessment/due")
def assessment_due(user_id: int, svc: ProgressionService = Depends(get_service)):
    return svc.check_due(user_id, trigger="app_launch").to_dict()


@router.post("/users/{user_id}/assessment")
def assess_week(user_id: int, svc: ProgressionService = Depends(get_service)):
    return svc.assess_week(user_id).to_dict()


@router.post("/users/{user_id}/decision")
def apply_decision(user_id: int, payload: DecisionIn, svc: ProgressionService = Depends(get_service)):
    return svc.apply_decision(user_id, payload.decision).to_dict()


@router.get("/users/{user_id}/history")
def history(user_id: int, limit: int = 52, svc: ProgressionService = Depends(get_service)):
    return {"user_id": user_id, "weeks": svc.history(user_id, limit=limit)}


@router.get("/users/{user_id}/progress/stats")
def progress_stats(user_id: int, svc: ProgressionService = Depends(get_service)):
    return svc.progression_stats(user_id)


@router.get("/jobs/{job_id}")
def job_status(job_id: int, svc: ProgressionService = Depends(get_service)):
    return svc.confirmation_status(job_id)


@router.post("/jobs/{job_id}/retry")
def job_retry(job_id: int, svc: ProgressionService = Depends(get_service)):
    return svc.retry_write(job_id)


app.include_router(router)

# ──────────────────────────────────────────────────────────────────────────────
# Admin endpoints
# ──────────────────────────────────────────────────────────────────────────────
admin = APIRouter(prefix="/admin", tags=["admin"])


def _require_admin(x_admin_token: str = Header(None, alias="X-Admin-Token")) -> str:
    expected = (os.getenv("ADMIN_API_TOKEN") or settings.ADMIN_API_TOKEN or "").strip()
    if not expected:
        raise HTTPException(status_code=503, detail="ADMIN_API_TOKEN not configured")
    if x_admin_token != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")
    return x_admin_token


@admin.post("/users/{user_id}/assessment/trigger")
def admin_trigger_assessment(
    user_id: int,
    svc: ProgressionService = Depends(get_service),
    _token: str = Depends(_require_admin),
):
    return svc.check_due(user_id, trigger="manual").to_dict()


@admin.post("/users/{user_id}/escalation/resolve")
def admin_resolve_escalation(
    user_id: int,
    payload: ResolveEscalationIn,
    svc: ProgressionService = Depends(get_service),
    _token: str = Depends(_require_admin),
):
    return svc.resolve_escalation(user_id, payload.resolution, note=payload.note).to_dict()


@admin.get("/history", response_class=HTMLResponse)
def admin_history(
    limit: int = 50,
    svc: ProgressionService = Depends(get_service),
    _token: str = Depends(_require_admin),
):
    with svc.session_factory() as s:
        rows = s.execute(
            select(WeeklyPerformanceHistory)
            .order_by(WeeklyPerformanceHistory.id.desc())
            .limit(limit)
        ).scalars().all()
        body = []
        for r in rows:
            body.append(
                "<tr>"
                f"<td>{r.user_id}</td>"
                f"<td>{r.assessment_week}</td>"
                f"<td>{r.week_number}/{r.phase_number}</td>"
                f"<td>{r.start_date} → {r.end_date}</td>"
                f"<td>{r.overall_achievement_avg:.0f}%</td>"
                f"<td>{r.consistency_days}/{r.total_tracking_days}</td>"
                f"<td>{r.progression_recommendation}</td>"
                f"<td>{r.user_decision}</td>"
                f"<td>{r.applied_transition or '…'}</td>"
                f"<td>{r.assessed_at:%Y-%m-%d %H:%M}</td>"
                "</tr>"
            )
        html = (
            "<h2>Weekly Progression History</h2>"
            f"<p>Generated {datetime.utcnow():%Y-%m-%d %H:%M} UTC</p>"
            "<table border='1' cellpadding='6' cellspacing='0'>"
            "<tr><th>User</th><th>Cal. week</th><th>Week/Phase</th><th>Window</th><th>Avg</th>"
            "<th>Consistent</th><th>Recommended</th><th>Decision</th><th>Applied</th><th>Assessed</th></tr>"
            + "".join(body) + "</table>"
        )
        return HTMLResponse(html)


app.include_router(admin)
