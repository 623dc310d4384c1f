from __future__ import annotations

from pydantic import BaseModel

from leadhub.crm.schemas import ActivityRead, UserSummary


class DashboardStats(BaseModel):
    total_leads: int
    new_leads: int
    qualified_leads: int
    won_leads: int
    lost_leads: int
    total_value: float
    won_value: float
    activities_today: int
    conversion_rate: float


class DashboardStatsResponse(BaseModel):
    stats: DashboardStats


class StatusCount(BaseModel):
    status: str
    count: int


class SourceCount(BaseModel):
    source: str
    count: int


class LeadsByStatusResponse(BaseModel):
    leads_by_status: list[StatusCount]


class LeadsBySourceResponse(BaseModel):
    leads_by_source: list[SourceCount]


class RecentActivitiesResponse(BaseModel):
    activities: list[ActivityRead]


class TeamMemberPerformance(BaseModel):
    user: UserSummary
    total_leads: int
    total_value: float
    won_leads: int
    won_value: float


class TeamPerformanceResponse(BaseModel):
    team_performance: list[TeamMemberPerformance]


class PipelineStage(BaseModel):
    status: str
    count: int
    total_value: float


class SalesPipelineResponse(BaseModel):
    pipeline: list[PipelineStage]
