from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from leadhub.context import get_correlation_id
from leadhub.core.auth import get_current_actor
from leadhub.core.database import get_db
from leadhub.core.errors import ServiceError, error_kind
from leadhub.crm.schemas import (
    ActivityCreate,
    ActivityListResponse,
    ActivityRead,
    ActivityUpdate,
    AuthResponse,
    LeadAssignRequest,
    LeadCreate,
    LeadDetailRead,
    LeadListResponse,
    LeadRead,
    LeadStatusRequest,
    LeadUpdate,
    LoginRequest,
    RegisterRequest,
    UserCreate,
    UserDetailRead,
    UserListResponse,
    UserRead,
    UserUpdate,
)
from leadhub.crm.service import ActivityService, AuthService, LeadService, UserService
from leadhub.notifications import dispatch_outbox
from leadhub.notifications.outbox import Outbox
from leadhub.platform.security import Actor

leads_router = APIRouter(prefix="/api/v1/leads", tags=["leads"])
activities_router = APIRouter(prefix="/api/v1/activities", tags=["activities"])
users_router = APIRouter(prefix="/api/v1/users", tags=["users"])
auth_router = APIRouter(prefix="/api/v1/auth", tags=["auth"])
lead_service = LeadService()
activity_service = ActivityService()
user_service = UserService()
auth_service = AuthService()


@dataclass
class ErrorEnvelope:
    code: str
    kind: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    kind: str = "internal_error",
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(getattr(request.state, "context", None), "request_id", None)
    payload = ErrorEnvelope(
        code=code,
        kind=kind,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def exception_response(request: Request, exc: HTTPException, code: str) -> JSONResponse:
    if isinstance(exc, ServiceError):
        message, details = exc.message, exc.details
    else:
        message, details = str(exc.detail), None
    return error_response(
        request,
        status_code=exc.status_code,
        code=code,
        message=message,
        kind=error_kind(exc),
        details=details,
    )


def _schedule(background_tasks: BackgroundTasks, outbox: Outbox) -> None:
    if len(outbox):
        background_tasks.add_task(dispatch_outbox, outbox)


@leads_router.get("", response_model=LeadListResponse)
def list_leads(
    request: Request,
    status_filter: str | None = Query(default=None, alias="status"),
    assigned_to_id: uuid.UUID | None = Query(default=None),
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
    sort_by: str | None = Query(default=None),
    sort_order: str | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> LeadListResponse | JSONResponse:
    try:
        return lead_service.list_leads(
            db,
            actor,
            filters={"status": status_filter, "assigned_to_id": assigned_to_id, "search": search},
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
        )
    except HTTPException as exc:
        return exception_response(request, exc, "lead_list_failed")


@leads_router.get("/{lead_id}", response_model=LeadDetailRead)
def get_lead(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> LeadDetailRead | JSONResponse:
    try:
        return lead_service.get_lead(db, actor, lead_id)
    except HTTPException as exc:
        return exception_response(request, exc, "lead_get_failed")


@leads_router.post("", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    request: Request,
    dto: LeadCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> LeadRead | JSONResponse:
    try:
        result = lead_service.create_lead(db, actor, dto)
    except HTTPException as exc:
        return exception_response(request, exc, "lead_create_failed")
    _schedule(background_tasks, result.outbox)
    return result.entity


@leads_router.patch("/{lead_id}", response_model=LeadRead)
def update_lead(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> LeadRead | JSONResponse:
    try:
        result = lead_service.update_lead(db, actor, lead_id, dto)
    except HTTPException as exc:
        return exception_response(request, exc, "lead_update_failed")
    _schedule(background_tasks, result.outbox)
    return result.entity


@leads_router.delete("/{lead_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_lead(
    request: Request,
    lead_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> Any:
    try:
        result = lead_service.delete_lead(db, actor, lead_id)
    except HTTPException as exc:
        return exception_response(request, exc, "lead_delete_failed")
    _schedule(background_tasks, result.outbox)
    return {"status": "deleted", "id": str(result.entity)}


@leads_router.patch("/{lead_id}/assign", response_model=LeadRead)
def assign_lead(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadAssignRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> LeadRead | JSONResponse:
    try:
        result = lead_service.assign_lead(db, actor, lead_id, dto.assigned_to_id)
    except HTTPException as exc:
        return exception_response(request, exc, "lead_assign_failed")
    _schedule(background_tasks, result.outbox)
    return result.entity


@leads_router.patch("/{lead_id}/status", response_model=LeadRead)
def set_lead_status(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadStatusRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> LeadRead | JSONResponse:
    try:
        result = lead_service.set_status(db, actor, lead_id, dto.status)
    except HTTPException as exc:
        return exception_response(request, exc, "lead_status_failed")
    _schedule(background_tasks, result.outbox)
    return result.entity


@activities_router.get("", response_model=ActivityListResponse)
def list_activities(
    request: Request,
    type_filter: str | None = Query(default=None, alias="type"),
    lead_id: uuid.UUID | None = Query(default=None),
    user_id: uuid.UUID | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
    sort_by: str | None = Query(default=None),
    sort_order: str | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> ActivityListResponse | JSONResponse:
    try:
        return activity_service.list_activities(
            db,
            actor,
            filters={"type": type_filter, "lead_id": lead_id, "user_id": user_id},
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
        )
    except HTTPException as exc:
        return exception_response(request, exc, "activity_list_failed")


@activities_router.get("/lead/{lead_id}", response_model=ActivityListResponse)
def list_lead_activities(
    request: Request,
    lead_id: uuid.UUID,
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> ActivityListResponse | JSONResponse:
    try:
        return activity_service.list_for_lead(db, actor, lead_id, page=page, limit=limit)
    except HTTPException as exc:
        return exception_response(request, exc, "activity_list_failed")


@activities_router.get("/{activity_id}", response_model=ActivityRead)
def get_activity(
    request: Request,
    activity_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> ActivityRead | JSONResponse:
    try:
        return activity_service.get_activity(db, actor, activity_id)
    except HTTPException as exc:
        return exception_response(request, exc, "activity_get_failed")


@activities_router.post("", response_model=ActivityRead, status_code=status.HTTP_201_CREATED)
def create_activity(
    request: Request,
    dto: ActivityCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> ActivityRead | JSONResponse:
    try:
        result = activity_service.create_activity(db, actor, dto)
    except HTTPException as exc:
        return exception_response(request, exc, "activity_create_failed")
    _schedule(background_tasks, result.outbox)
    return result.entity


@activities_router.patch("/{activity_id}", response_model=ActivityRead)
def update_activity(
    request: Request,
    activity_id: uuid.UUID,
    dto: ActivityUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> ActivityRead | JSONResponse:
    try:
        result = activity_service.update_activity(db, actor, activity_id, dto)
    except HTTPException as exc:
        return exception_response(request, exc, "activity_update_failed")
    _schedule(background_tasks, result.outbox)
    return result.entity


@activities_router.delete("/{activity_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_activity(
    request: Request,
    activity_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> Any:
    try:
        result = activity_service.delete_activity(db, actor, activity_id)
    except HTTPException as exc:
        return exception_response(request, exc, "activity_delete_failed")
    _schedule(background_tasks, result.outbox)
    return {"status": "deleted", "id": str(result.entity)}


@users_router.get("", response_model=UserListResponse)
def list_users(
    request: Request,
    role: str | None = Query(default=None),
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> UserListResponse | JSONResponse:
    try:
        return user_service.list_users(db, actor, role=role, search=search, page=page, limit=limit)
    except HTTPException as exc:
        return exception_response(request, exc, "user_list_failed")


@users_router.get("/{user_id}", response_model=UserDetailRead)
def get_user(
    request: Request,
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> UserDetailRead | JSONResponse:
    try:
        return user_service.get_user(db, actor, user_id)
    except HTTPException as exc:
        return exception_response(request, exc, "user_get_failed")


@users_router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(
    request: Request,
    dto: UserCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> UserRead | JSONResponse:
    try:
        return user_service.create_user(db, actor, dto)
    except HTTPException as exc:
        return exception_response(request, exc, "user_create_failed")


@users_router.patch("/{user_id}", response_model=UserRead)
def update_user(
    request: Request,
    user_id: uuid.UUID,
    dto: UserUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> UserRead | JSONResponse:
    try:
        return user_service.update_user(db, actor, user_id, dto)
    except HTTPException as exc:
        return exception_response(request, exc, "user_update_failed")


@users_router.delete("/{user_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_user(
    request: Request,
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> Any:
    try:
        user_service.delete_user(db, actor, user_id)
        return {"status": "deleted", "id": str(user_id)}
    except HTTPException as exc:
        return exception_response(request, exc, "user_delete_failed")


@auth_router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(request: Request, dto: RegisterRequest, db: Session = Depends(get_db)) -> AuthResponse | JSONResponse:
    try:
        return auth_service.register(db, dto)
    except HTTPException as exc:
        return exception_response(request, exc, "auth_register_failed")


@auth_router.post("/login", response_model=AuthResponse)
def login(request: Request, dto: LoginRequest, db: Session = Depends(get_db)) -> AuthResponse | JSONResponse:
    try:
        return auth_service.login(db, dto)
    except HTTPException as exc:
        return exception_response(request, exc, "auth_login_failed")


@auth_router.get("/me", response_model=UserRead)
def me(
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> UserRead | JSONResponse:
    try:
        return user_service.profile(db, actor)
    except HTTPException as exc:
        return exception_response(request, exc, "auth_me_failed")
