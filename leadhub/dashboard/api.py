from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from leadhub.core.auth import get_current_actor
from leadhub.core.database import get_db
from leadhub.crm.api import exception_response
from leadhub.dashboard.schemas import (
    DashboardStatsResponse,
    LeadsBySourceResponse,
    LeadsByStatusResponse,
    RecentActivitiesResponse,
    SalesPipelineResponse,
    TeamPerformanceResponse,
)
from leadhub.dashboard.service import DashboardService
from leadhub.platform.security import Actor

router = APIRouter(prefix="/api/v1/dashboard", tags=["dashboard"])
dashboard_service = DashboardService()


@router.get("/stats", response_model=DashboardStatsResponse)
def get_stats(
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> DashboardStatsResponse | JSONResponse:
    try:
        return dashboard_service.get_stats(db, actor)
    except HTTPException as exc:
        return exception_response(request, exc, "dashboard_stats_failed")


@router.get("/leads-by-status", response_model=LeadsByStatusResponse)
def get_leads_by_status(
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> LeadsByStatusResponse | JSONResponse:
    try:
        return dashboard_service.leads_by_status(db, actor)
    except HTTPException as exc:
        return exception_response(request, exc, "dashboard_leads_by_status_failed")


@router.get("/leads-by-source", response_model=LeadsBySourceResponse)
def get_leads_by_source(
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> LeadsBySourceResponse | JSONResponse:
    try:
        return dashboard_service.leads_by_source(db, actor)
    except HTTPException as exc:
        return exception_response(request, exc, "dashboard_leads_by_source_failed")


@router.get("/recent-activities", response_model=RecentActivitiesResponse)
def get_recent_activities(
    request: Request,
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> RecentActivitiesResponse | JSONResponse:
    try:
        return dashboard_service.recent_activities(db, actor, limit=limit)
    except HTTPException as exc:
        return exception_response(request, exc, "dashboard_recent_activities_failed")


@router.get("/team-performance", response_model=TeamPerformanceResponse)
def get_team_performance(
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> TeamPerformanceResponse | JSONResponse:
    try:
        return dashboard_service.team_performance(db, actor)
    except HTTPException as exc:
        return exception_response(request, exc, "dashboard_team_performance_failed")


@router.get("/sales-pipeline", response_model=SalesPipelineResponse)
def get_sales_pipeline(
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> SalesPipelineResponse | JSONResponse:
    try:
        return dashboard_service.sales_pipeline(db, actor)
    except HTTPException as exc:
        return exception_response(request, exc, "dashboard_sales_pipeline_failed")
