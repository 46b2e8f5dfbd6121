"""API routes for the Tutor Insights backend."""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from .models import (
    EvaluateSessionRequest,
    EvaluateSessionResponse,
    FirstSessionsResponse,
    RiskLevel,
    TutorDetailResponse,
    TutorListResponse,
)
from .services import (
    DashboardService,
    EvaluationFailedError,
    SessionNotFoundError,
    TranscriptMissingError,
    TutorNotFoundError,
    get_dashboard_service,
)

LOGGER = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["tutors"])

SortField = Literal["churn_risk", "reschedule_rate", "no_show_rate", "rating", "ai_score", "name"]


def resolve_dashboard_service() -> DashboardService:
    """Wrapper to allow monkeypatching of the shared dashboard service dependency."""
    return get_dashboard_service()


@router.get("/tutors", response_model=TutorListResponse)
def list_tutors(
    subject: Optional[str] = Query(default=None, description="Case-insensitive subject filter"),
    risk_level: Optional[RiskLevel] = Query(default=None, description="Churn risk label filter"),
    sort_by: SortField = Query(default="churn_risk"),
    order: Literal["asc", "desc"] = Query(default="desc"),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    service: DashboardService = Depends(resolve_dashboard_service),
) -> TutorListResponse:
    """Return tutors merged with their latest risk snapshot.

    Args:
        subject (Optional[str]): Keep tutors teaching a matching subject.
        risk_level (Optional[RiskLevel]): Keep tutors with this churn risk label.
        sort_by (SortField): Field to sort on.
        order (str): Sort direction.
        limit (int): Page size.
        offset (int): Rows to skip.
        service (DashboardService): The shared dashboard service dependency.
    Returns:
        TutorListResponse: The requested page plus pagination totals.
    """
    payload = service.list_tutors(
        subject=subject,
        risk_level=risk_level,
        sort_by=sort_by,
        order=order,
        limit=limit,
        offset=offset,
    )
    return TutorListResponse(**payload)


@router.get("/tutors/{tutor_id}", response_model=TutorDetailResponse)
def get_tutor_detail(
    tutor_id: str,
    service: DashboardService = Depends(resolve_dashboard_service),
) -> TutorDetailResponse:
    """Return one tutor's snapshot, recent sessions and weekly rating trend."""
    try:
        payload = service.get_tutor_detail(tutor_id)
    except TutorNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return TutorDetailResponse(**payload)


@router.get("/first-sessions", response_model=FirstSessionsResponse)
def get_first_sessions(
    days: int = Query(default=30, ge=1, le=365),
    subject: Optional[str] = Query(default=None),
    service: DashboardService = Depends(resolve_dashboard_service),
) -> FirstSessionsResponse:
    payload = service.get_first_session_overview(days=days, subject=subject)
    return FirstSessionsResponse(**payload)


@router.post("/evaluate-session", response_model=EvaluateSessionResponse)
def evaluate_session(
    payload: EvaluateSessionRequest,
    service: DashboardService = Depends(resolve_dashboard_service),
) -> EvaluateSessionResponse:
    """Evaluate a session transcript on demand, reusing a stored evaluation when present.

    Args:
        payload (EvaluateSessionRequest): Session to evaluate.
        service (DashboardService): The shared dashboard service dependency.
    Returns:
        EvaluateSessionResponse: The evaluation and whether it was already stored.
    Raises:
        HTTPException: 404 for an unknown session, 400 when it has no transcript,
            502 when the evaluation provider fails.
    """
    try:
        result = service.evaluate_session(payload.session_id)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except TranscriptMissingError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except EvaluationFailedError as exc:
        LOGGER.error("Evaluation failed for session %s: %s", payload.session_id, exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Evaluation failed: {exc}",
        ) from exc
    return EvaluateSessionResponse(success=True, **result)
