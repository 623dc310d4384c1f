from leadhub.platform.security.context import Actor
from leadhub.platform.security.policies import (
    can_delete_lead,
    can_mutate_activity,
    can_mutate_lead,
    can_view_activity,
    can_view_lead,
    can_view_team_performance,
    forbidden,
)
from leadhub.platform.security.rls import (
    UNRESTRICTED,
    LeadScope,
    apply_activity_scope,
    apply_lead_scope,
    visibility_scope,
)

__all__ = [
    "Actor",
    "LeadScope",
    "UNRESTRICTED",
    "visibility_scope",
    "apply_lead_scope",
    "apply_activity_scope",
    "can_view_lead",
    "can_mutate_lead",
    "can_delete_lead",
    "can_view_activity",
    "can_mutate_activity",
    "can_view_team_performance",
    "forbidden",
]
