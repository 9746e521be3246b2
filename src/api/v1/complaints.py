"""Complaint endpoints for CampusDesk API v1.

Every endpoint acts on behalf of the caller's :class:`RoleContext`
(see :mod:`src.middleware.auth`).  Domain errors map to HTTP as:

=====================  ======
AccessDenied           403
ComplaintNotFound      404
ScopeNotReady          409
EligibilityError       422
InvalidCursor          400
TransientStoreError    503
=====================  ======
"""

from __future__ import annotations

from datetime import date

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from src.middleware.auth import get_role_context
from src.models.complaint import ComplaintSubmission, ComplaintView, Reply, TriageTurn
from src.models.context import RoleContext
from src.models.enums import ComplaintStatus, StatusFilter
from src.services.complaints import ComplaintService, OperationResult
from src.services.errors import (
    AccessDenied,
    CampusDeskError,
    DocumentNotFound,
    EligibilityError,
    InvalidCursor,
    ScopeNotReady,
    TransientStoreError,
)
from src.services.stats import AnalyticsSummary, ComplaintStats

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/complaints", tags=["complaints"])


# ---------------------------------------------------------------------------
# Request / response schemas
# ---------------------------------------------------------------------------


class ComplaintListResponse(BaseModel):
    items: list[ComplaintView]
    cursor: str | None = None
    has_more: bool = False


class OperationResponse(BaseModel):
    complaint_id: str
    complaint: ComplaintView | None = None
    secondary_effects: bool = Field(
        default=True,
        description="False when the change was saved but a notification could not be queued.",
    )


class ReplyRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=5000)


class StatusRequest(BaseModel):
    status: ComplaintStatus


class DepartmentRequest(BaseModel):
    department: str = Field(..., min_length=1, max_length=100)


class NoteRequest(BaseModel):
    note: str = Field(default="", max_length=5000)


class RatingRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(default="", max_length=2000)


class BulkStatusRequest(BaseModel):
    complaint_ids: list[str] = Field(..., min_length=1, max_length=500)
    status: ComplaintStatus


class BulkStatusResponse(BaseModel):
    updated: list[str]
    secondary_effects: bool = True


class AssistRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=5000)
    history: list[TriageTurn] = Field(default_factory=list, max_length=50)


class AssistResponse(BaseModel):
    reply: str


class SuggestionsResponse(BaseModel):
    suggestions: list[str]


class RuleDecision(BaseModel):
    allowed: bool
    reason: str = ""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _service(request: Request) -> ComplaintService:
    return request.app.state.complaints


def _to_http(exc: CampusDeskError) -> HTTPException:
    if isinstance(exc, AccessDenied):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, DocumentNotFound):
        return HTTPException(status_code=404, detail="Complaint not found.")
    if isinstance(exc, ScopeNotReady):
        return HTTPException(
            status_code=409,
            detail="Your department is still being resolved. Try again shortly.",
            headers={"Retry-After": "1"},
        )
    if isinstance(exc, EligibilityError):
        return HTTPException(status_code=422, detail={"rule": exc.rule, "message": exc.message})
    if isinstance(exc, InvalidCursor):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, TransientStoreError):
        return HTTPException(status_code=503, detail="The complaint store is temporarily unavailable.")
    logger.error("api.complaints_unhandled_error", error=str(exc), exc_info=True)
    return HTTPException(status_code=500, detail="Unexpected error while handling the complaint.")


def _operation(result: OperationResult) -> OperationResponse:
    return OperationResponse(
        complaint_id=result.complaint_id,
        complaint=result.complaint,
        secondary_effects=result.secondary_effects,
    )


# ---------------------------------------------------------------------------
# Collection endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=ComplaintListResponse)
async def list_complaints(
    request: Request,
    status: StatusFilter = Query(default=StatusFilter.ALL),
    cursor: str | None = Query(default=None, max_length=1000),
    ctx: RoleContext = Depends(get_role_context),
) -> ComplaintListResponse:
    """One page of complaints visible to the caller, newest first.

    Pass the returned ``cursor`` to fetch the next page.  A cursor is only
    valid for the status filter it was issued with.
    """
    try:
        page = await _service(request).list_complaints(ctx, status, cursor)
    except CampusDeskError as exc:
        raise _to_http(exc) from exc
    return ComplaintListResponse(items=page.items, cursor=page.cursor, has_more=page.has_more)


@router.get("/stats", response_model=ComplaintStats)
async def complaint_stats(
    request: Request,
    ctx: RoleContext = Depends(get_role_context),
) -> ComplaintStats:
    """Totals for the caller's scope; ``pending`` means "not yet resolved"."""
    try:
        return await _service(request).stats(ctx)
    except CampusDeskError as exc:
        raise _to_http(exc) from exc


@router.get("/analytics", response_model=AnalyticsSummary)
async def complaint_analytics(
    request: Request,
    start: date | None = Query(default=None),
    end: date | None = Query(default=None),
    ctx: RoleContext = Depends(get_role_context),
) -> AnalyticsSummary:
    if start is not None and end is not None and start > end:
        raise HTTPException(status_code=422, detail="start must not be after end.")
    try:
        return await _service(request).analytics(ctx, start=start, end=end)
    except CampusDeskError as exc:
        raise _to_http(exc) from exc


@router.post("", response_model=OperationResponse, status_code=201)
async def submit_complaint(
    body: ComplaintSubmission,
    request: Request,
    ctx: RoleContext = Depends(get_role_context),
) -> OperationResponse:
    """File a complaint.  Category, priority and department are set by triage."""
    try:
        result = await _service(request).submit(ctx, body)
    except CampusDeskError as exc:
        raise _to_http(exc) from exc
    return _operation(result)


@router.post("/assist", response_model=AssistResponse)
async def triage_assist(
    body: AssistRequest,
    request: Request,
    ctx: RoleContext = Depends(get_role_context),
) -> AssistResponse:
    """Pre-submission help chat."""
    reply = await _service(request).assist(body.message, body.history)
    return AssistResponse(reply=reply)


@router.post("/bulk-status", response_model=BulkStatusResponse)
async def bulk_update_status(
    body: BulkStatusRequest,
    request: Request,
    ctx: RoleContext = Depends(get_role_context),
) -> BulkStatusResponse:
    """Set one status on several complaints: all of them change or none do."""
    try:
        result = await _service(request).bulk_update_status(ctx, body.complaint_ids, body.status)
    except CampusDeskError as exc:
        raise _to_http(exc) from exc
    return BulkStatusResponse(updated=result.updated, secondary_effects=result.secondary_effects)


# ---------------------------------------------------------------------------
# Single complaint endpoints
# ---------------------------------------------------------------------------


@router.get("/{complaint_id}", response_model=ComplaintView)
async def get_complaint(
    complaint_id: str,
    request: Request,
    ctx: RoleContext = Depends(get_role_context),
) -> ComplaintView:
    try:
        return await _service(request).get(ctx, complaint_id)
    except CampusDeskError as exc:
        raise _to_http(exc) from exc


@router.delete("/{complaint_id}", response_model=OperationResponse)
async def delete_complaint(
    complaint_id: str,
    request: Request,
    ctx: RoleContext = Depends(get_role_context),
) -> OperationResponse:
    try:
        result = await _service(request).delete(ctx, complaint_id)
    except CampusDeskError as exc:
        raise _to_http(exc) from exc
    return _operation(result)


@router.get("/{complaint_id}/replies", response_model=list[Reply])
async def list_replies(
    complaint_id: str,
    request: Request,
    ctx: RoleContext = Depends(get_role_context),
) -> list[Reply]:
    """Reply thread, oldest first."""
    try:
        return await _service(request).list_replies(ctx, complaint_id)
    except CampusDeskError as exc:
        raise _to_http(exc) from exc


@router.post("/{complaint_id}/replies", response_model=OperationResponse, status_code=201)
async def post_reply(
    complaint_id: str,
    body: ReplyRequest,
    request: Request,
    ctx: RoleContext = Depends(get_role_context),
) -> OperationResponse:
    try:
        result = await _service(request).reply(ctx, complaint_id, body.text)
    except CampusDeskError as exc:
        raise _to_http(exc) from exc
    return _operation(result)


@router.patch("/{complaint_id}/status", response_model=OperationResponse)
async def update_status(
    complaint_id: str,
    body: StatusRequest,
    request: Request,
    ctx: RoleContext = Depends(get_role_context),
) -> OperationResponse:
    try:
        result = await _service(request).update_status(ctx, complaint_id, body.status)
    except CampusDeskError as exc:
        raise _to_http(exc) from exc
    return _operation(result)


@router.patch("/{complaint_id}/department", response_model=OperationResponse)
async def assign_department(
    complaint_id: str,
    body: DepartmentRequest,
    request: Request,
    ctx: RoleContext = Depends(get_role_context),
) -> OperationResponse:
    try:
        result = await _service(request).assign_department(ctx, complaint_id, body.department)
    except CampusDeskError as exc:
        raise _to_http(exc) from exc
    return _operation(result)


@router.patch("/{complaint_id}/note", response_model=OperationResponse)
async def set_internal_note(
    complaint_id: str,
    body: NoteRequest,
    request: Request,
    ctx: RoleContext = Depends(get_role_context),
) -> OperationResponse:
    try:
        result = await _service(request).set_internal_note(ctx, complaint_id, body.note)
    except CampusDeskError as exc:
        raise _to_http(exc) from exc
    return _operation(result)


@router.post("/{complaint_id}/escalate", response_model=OperationResponse)
async def escalate_complaint(
    complaint_id: str,
    request: Request,
    ctx: RoleContext = Depends(get_role_context),
) -> OperationResponse:
    try:
        result = await _service(request).escalate(ctx, complaint_id)
    except CampusDeskError as exc:
        raise _to_http(exc) from exc
    return _operation(result)


@router.post("/{complaint_id}/reopen", response_model=OperationResponse)
async def reopen_complaint(
    complaint_id: str,
    request: Request,
    ctx: RoleContext = Depends(get_role_context),
) -> OperationResponse:
    try:
        result = await _service(request).reopen(ctx, complaint_id)
    except CampusDeskError as exc:
        raise _to_http(exc) from exc
    return _operation(result)


@router.post("/{complaint_id}/rating", response_model=OperationResponse)
async def rate_complaint(
    complaint_id: str,
    body: RatingRequest,
    request: Request,
    ctx: RoleContext = Depends(get_role_context),
) -> OperationResponse:
    try:
        result = await _service(request).rate(ctx, complaint_id, body.rating, body.comment)
    except CampusDeskError as exc:
        raise _to_http(exc) from exc
    return _operation(result)


@router.get("/{complaint_id}/suggestions", response_model=SuggestionsResponse)
async def reply_suggestions(
    complaint_id: str,
    request: Request,
    ctx: RoleContext = Depends(get_role_context),
) -> SuggestionsResponse:
    """Closing-reply suggestions for staff."""
    try:
        suggestions = await _service(request).suggest_replies(ctx, complaint_id)
    except CampusDeskError as exc:
        raise _to_http(exc) from exc
    return SuggestionsResponse(suggestions=suggestions)


@router.get("/{complaint_id}/eligibility", response_model=dict[str, RuleDecision])
async def complaint_eligibility(
    complaint_id: str,
    request: Request,
    ctx: RoleContext = Depends(get_role_context),
) -> dict[str, RuleDecision]:
    """Which owner actions are currently allowed, with the reason when not."""
    try:
        decisions = await _service(request).eligibility(ctx, complaint_id)
    except CampusDeskError as exc:
        raise _to_http(exc) from exc
    return {name: RuleDecision(allowed=d.allowed, reason=d.reason) for name, d in decisions.items()}
