from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import Select, case, func, select
from sqlalchemy.orm import Session, selectinload

from leadhub.crm.models import Activity, Lead, LeadStatus, User
from leadhub.crm.schemas import UserSummary
from leadhub.crm.service import activity_to_read
from leadhub.dashboard.schemas import (
    DashboardStats,
    DashboardStatsResponse,
    LeadsBySourceResponse,
    LeadsByStatusResponse,
    PipelineStage,
    RecentActivitiesResponse,
    SalesPipelineResponse,
    SourceCount,
    StatusCount,
    TeamMemberPerformance,
    TeamPerformanceResponse,
)
from leadhub.platform.security import (
    Actor,
    LeadScope,
    apply_activity_scope,
    apply_lead_scope,
    can_view_team_performance,
    forbidden,
    visibility_scope,
)


logger = logging.getLogger("leadhub.dashboard")

PIPELINE_ORDER = {
    LeadStatus.NEW.value: 1,
    LeadStatus.CONTACTED.value: 2,
    LeadStatus.QUALIFIED.value: 3,
    LeadStatus.PROPOSAL.value: 4,
    LeadStatus.NEGOTIATION.value: 5,
}
CLOSED_STATUSES = (LeadStatus.WON.value, LeadStatus.LOST.value)


def start_of_local_day(now: datetime | None = None) -> datetime:
    """Server-local midnight of ``now``, expressed in UTC for comparison with stored timestamps."""

    local_now = (now or datetime.now(timezone.utc)).astimezone()
    return local_now.replace(hour=0, minute=0, second=0, microsecond=0).astimezone(timezone.utc)


def conversion_rate(won_leads: int, total_leads: int) -> float:
    if total_leads <= 0:
        return 0.0
    return round(won_leads / total_leads * 100, 2)


class DashboardService:
    def get_stats(self, session: Session, actor: Actor, *, now: datetime | None = None) -> DashboardStatsResponse:
        scope = visibility_scope(session, actor)

        total_leads = self._count_leads(session, scope)
        new_leads = self._count_leads(session, scope, LeadStatus.NEW.value)
        qualified_leads = self._count_leads(session, scope, LeadStatus.QUALIFIED.value)
        won_leads = self._count_leads(session, scope, LeadStatus.WON.value)
        lost_leads = self._count_leads(session, scope, LeadStatus.LOST.value)

        total_value = session.scalar(
            apply_lead_scope(
                select(func.coalesce(func.sum(Lead.estimated_value), 0)).where(Lead.status != LeadStatus.LOST.value),
                scope,
            )
        )
        won_value = session.scalar(
            apply_lead_scope(
                select(func.coalesce(func.sum(Lead.estimated_value), 0)).where(Lead.status == LeadStatus.WON.value),
                scope,
            )
        )
        activities_today = session.scalar(
            apply_activity_scope(
                select(func.count(Activity.id)).where(Activity.created_at >= start_of_local_day(now)),
                scope,
            )
        )

        return DashboardStatsResponse(
            stats=DashboardStats(
                total_leads=total_leads,
                new_leads=new_leads,
                qualified_leads=qualified_leads,
                won_leads=won_leads,
                lost_leads=lost_leads,
                total_value=float(total_value or 0),
                won_value=float(won_value or 0),
                activities_today=int(activities_today or 0),
                conversion_rate=conversion_rate(won_leads, total_leads),
            )
        )

    def leads_by_status(self, session: Session, actor: Actor) -> LeadsByStatusResponse:
        stmt = apply_lead_scope(select(Lead.status, func.count(Lead.id)), visibility_scope(session, actor))
        rows = session.execute(stmt.group_by(Lead.status).order_by(Lead.status)).all()
        return LeadsByStatusResponse(leads_by_status=[StatusCount(status=status, count=count) for status, count in rows])

    def leads_by_source(self, session: Session, actor: Actor) -> LeadsBySourceResponse:
        stmt = apply_lead_scope(
            select(Lead.source, func.count(Lead.id)).where(Lead.source.is_not(None)),
            visibility_scope(session, actor),
        )
        rows = session.execute(stmt.group_by(Lead.source).order_by(Lead.source)).all()
        return LeadsBySourceResponse(leads_by_source=[SourceCount(source=source, count=count) for source, count in rows])

    def recent_activities(self, session: Session, actor: Actor, *, limit: int = 10) -> RecentActivitiesResponse:
        stmt = apply_activity_scope(select(Activity), visibility_scope(session, actor))
        activities = session.scalars(
            stmt.options(selectinload(Activity.lead), selectinload(Activity.user))
            .order_by(Activity.created_at.desc(), Activity.id)
            .limit(limit)
        ).all()
        return RecentActivitiesResponse(activities=[activity_to_read(item) for item in activities])

    def team_performance(self, session: Session, actor: Actor) -> TeamPerformanceResponse:
        if not can_view_team_performance(actor):
            raise forbidden("dashboard", "team_performance")

        won = Lead.status == LeadStatus.WON.value
        rows = session.execute(
            select(
                User,
                func.count(Lead.id),
                func.coalesce(func.sum(Lead.estimated_value), 0),
                func.coalesce(func.sum(case((won, 1), else_=0)), 0),
                func.coalesce(func.sum(case((won, Lead.estimated_value), else_=0)), 0),
            )
            .outerjoin(Lead, Lead.assigned_to_id == User.id)
            .group_by(User.id)
            .order_by(User.first_name, User.last_name, User.id)
        ).all()
        return TeamPerformanceResponse(
            team_performance=[
                TeamMemberPerformance(
                    user=UserSummary.model_validate(user),
                    total_leads=int(total_leads or 0),
                    total_value=float(total_value or 0),
                    won_leads=int(won_leads or 0),
                    won_value=float(won_value or 0),
                )
                for user, total_leads, total_value, won_leads, won_value in rows
            ]
        )

    def sales_pipeline(self, session: Session, actor: Actor) -> SalesPipelineResponse:
        stage_order = case(PIPELINE_ORDER, value=Lead.status, else_=len(PIPELINE_ORDER) + 1)
        stmt: Select = apply_lead_scope(
            select(Lead.status, func.count(Lead.id), func.coalesce(func.sum(Lead.estimated_value), 0)).where(
                Lead.status.not_in(CLOSED_STATUSES)
            ),
            visibility_scope(session, actor),
        )
        rows = session.execute(stmt.group_by(Lead.status).order_by(stage_order, Lead.status)).all()
        return SalesPipelineResponse(
            pipeline=[
                PipelineStage(status=status, count=count, total_value=float(total or 0)) for status, count, total in rows
            ]
        )

    def _count_leads(self, session: Session, scope: LeadScope, status: str | None = None) -> int:
        stmt = select(func.count(Lead.id))
        if status is not None:
            stmt = stmt.where(Lead.status == status)
        return int(session.scalar(apply_lead_scope(stmt, scope)) or 0)
