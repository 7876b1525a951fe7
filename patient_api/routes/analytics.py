"""
Analytics Routes - intake form funnel for a clinic's tenant product forms

Events are views (optionally carrying metadata.stepNumber), dropoffs and
conversions. They are grouped into sessions by session id, falling back to
the user id for signed-in patients.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session, joinedload

from ..auth import get_current_user, is_impersonating, require_clinic
from ..database import get_db
from ..models import TenantAnalyticsEvent, TenantProductForm, User
from ..phi import mask_phi

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analytics", tags=["Analytics"])

DEFAULT_STAGES = [
    {"stepNumber": 1, "questionText": "Medical Questions", "questionId": "product", "questionType": "product_questions"},
    {"stepNumber": 2, "questionText": "Create Account", "questionId": "account", "questionType": "account_creation"},
    {
        "stepNumber": 3,
        "questionText": "Product Selection",
        "questionId": "productSelection",
        "questionType": "product_selection",
    },
    {"stepNumber": 4, "questionText": "Payment & Checkout", "questionId": "checkout", "questionType": "checkout"},
]

RECENT_SESSIONS = 10
DAILY_STATS_DAYS = 14


def build_stages(steps) -> list[dict]:
    """Enabled form steps in order, or the default checkout funnel"""
    if not isinstance(steps, list):
        return DEFAULT_STAGES
    enabled = [s for s in steps if isinstance(s, dict) and s.get("enabled") is not False]
    if not enabled:
        return DEFAULT_STAGES
    enabled.sort(key=lambda s: s.get("order") or 0)
    return [
        {
            "stepNumber": index,
            "questionText": step.get("question") or step.get("label") or f"Step {index}",
            "questionId": step.get("id") or f"step-{index}",
            "questionType": step.get("type") or "question",
        }
        for index, step in enumerate(enabled, start=1)
    ]


def _step_number(event: TenantAnalyticsEvent) -> Optional[int]:
    metadata = event.event_metadata or {}
    try:
        return int(metadata["stepNumber"]) if metadata.get("stepNumber") else None
    except (TypeError, ValueError):
        return None


def group_sessions(events: list[TenantAnalyticsEvent], total_steps: int) -> dict[str, dict]:
    sessions: dict[str, dict] = {}
    for event in events:
        key = event.session_id or event.user_id
        if not key:
            continue

        session = sessions.get(key)
        if session is None:
            session = sessions[key] = {
                "sessionId": key,
                "userId": event.user_id,
                "user": event.user,
                "converted": False,
                "firstView": event.created_at,
                "lastView": event.created_at,
                "lastStepReached": 0,
                "metadata": event.event_metadata or {},
            }

        step = _step_number(event)
        if event.event_type == "view":
            session["firstView"] = min(session["firstView"], event.created_at)
            session["lastView"] = max(session["lastView"], event.created_at)
            if step:
                session["lastStepReached"] = max(session["lastStepReached"], step)
        elif event.event_type == "conversion":
            session["converted"] = True
            session["lastStepReached"] = total_steps
        elif event.event_type == "dropoff" and step:
            session["lastStepReached"] = step
    return sessions


def stage_metrics(stages: list[dict], sessions: list[dict]) -> list[dict]:
    last_step = len(stages)
    metrics = []
    for stage in stages:
        number = stage["stepNumber"]
        reached = sum(1 for s in sessions if s["lastStepReached"] >= number)
        completed = sum(
            1
            for s in sessions
            if s["lastStepReached"] > number or (s["converted"] and number == last_step == s["lastStepReached"])
        )
        dropoffs = reached - completed
        metrics.append(
            {
                "stepNumber": number,
                "questionText": stage["questionText"],
                "reached": reached,
                "completed": completed,
                "dropoffs": dropoffs,
                "dropoffRate": round(dropoffs / reached * 100) if reached else 0,
            }
        )
    return metrics


def session_summary(session: dict, stages: list[dict]) -> dict:
    total_steps = len(stages)
    duration = max(0, int((session["lastView"] - session["firstView"]).total_seconds()))
    reached = session["lastStepReached"]

    if session["converted"]:
        current_stage = "Completed"
    else:
        index = min(reached, total_steps - 1)
        current_stage = stages[index]["questionText"] if stages else "Not Started"

    user = session["user"]
    if user and user.first_name:
        identity = {
            "firstName": user.first_name,
            "lastName": user.last_name,
            "email": user.email,
            "phoneNumber": user.phone_number,
        }
    else:
        metadata = session["metadata"]
        identity = {
            "firstName": "Anonymous",
            "lastName": "User",
            "email": f"{metadata.get('ipAddress') or 'Unknown IP'} • {metadata.get('location') or 'Unknown Location'}",
            "phoneNumber": None,
        }

    return {
        "sessionId": session["sessionId"],
        "userId": session["userId"],
        **identity,
        "viewDuration": duration,
        "currentStage": current_stage,
        "lastStepReached": reached,
        "totalSteps": total_steps,
        "completionRate": round(reached / total_steps * 100) if reached and total_steps else 0,
        "lastViewed": session["lastView"].isoformat() if session["lastView"] else None,
        "converted": session["converted"],
    }


def daily_stats(events: list[TenantAnalyticsEvent], today: Optional[datetime] = None) -> list[dict]:
    today = (today or datetime.utcnow()).date()
    started: dict = {}
    completed: dict = {}
    for event in events:
        day = event.created_at.date()
        if event.event_type == "view":
            started[day] = started.get(day, 0) + 1
        elif event.event_type == "conversion":
            completed[day] = completed.get(day, 0) + 1

    stats = []
    for offset in range(DAILY_STATS_DAYS - 1, -1, -1):
        day = today - timedelta(days=offset)
        stats.append(
            {
                "date": f"{day.strftime('%b')} {day.day}",
                "started": started.get(day, 0),
                "completed": completed.get(day, 0),
            }
        )
    return stats


@router.get("/forms/{form_id}/sessions")
async def get_form_sessions(
    form_id: str,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Funnel metrics and recent sessions for one of the caller's clinic forms"""
    clinic_id = require_clinic(current_user)

    form = (
        db.query(TenantProductForm)
        .options(joinedload(TenantProductForm.product))
        .filter(
            TenantProductForm.id == form_id,
            TenantProductForm.clinic_id == clinic_id,
            TenantProductForm.deleted_at.is_(None),
        )
        .first()
    )
    if not form:
        raise HTTPException(status_code=404, detail="Form not found")

    stages = build_stages(form.steps)
    events = (
        db.query(TenantAnalyticsEvent)
        .options(joinedload(TenantAnalyticsEvent.user))
        .filter(TenantAnalyticsEvent.form_id == form_id, TenantAnalyticsEvent.deleted_at.is_(None))
        .order_by(TenantAnalyticsEvent.created_at.desc())
        .all()
    )

    grouped = list(group_sessions(events, len(stages)).values())
    summaries = [session_summary(s, stages) for s in grouped]
    summaries.sort(key=lambda s: s["lastViewed"] or "", reverse=True)

    total = len(summaries)
    conversions = sum(1 for s in summaries if s["converted"])
    recent = summaries[:RECENT_SESSIONS]
    if is_impersonating(request):
        recent = mask_phi(recent)

    logger.info(f"📊 Form {form_id} analytics: {total} sessions, {conversions} conversions")
    return {
        "success": True,
        "data": {
            "formId": form_id,
            "formName": form.product.name if form.product else "Intake Form",
            "totalSessions": total,
            "completionRate": round(conversions / total * 100) if total else 0,
            "averageDuration": round(sum(s["viewDuration"] for s in summaries) / total) if total else 0,
            "formSteps": stages,
            "stageMetrics": stage_metrics(stages, grouped),
            "sessions": recent,
            "dailyStats": daily_stats(events),
        },
    }
