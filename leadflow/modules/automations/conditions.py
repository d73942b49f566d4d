from leadflow.modules.automations.graph import COMPARABLE_FIELDS, ConditionConfig
from leadflow.modules.leads.models import Lead


def evaluate(cond: ConditionConfig, lead: Lead | None) -> bool:
    kind = cond.condition_type
    if kind == "always":
        return True
    if lead is None:
        return False
    if kind == "has_tag":
        return cond.tag in (lead.tags or [])
    if kind == "in_stage":
        return lead.stage_id == cond.stage_id
    if kind == "is_assigned":
        return lead.assigned_user_id is not None
    if kind == "has_first_response":
        return lead.first_response_at is not None
    if kind == "field_equals":
        if cond.field not in COMPARABLE_FIELDS:
            raise ValueError(f"field_equals cannot compare field '{cond.field}'")
        actual = getattr(lead, cond.field)
        if actual is None or cond.value is None:
            return actual is None and cond.value is None
        if isinstance(cond.value, str):
            return str(actual) == cond.value
        return actual == cond.value
    raise ValueError(f"unknown condition type '{kind}'")
