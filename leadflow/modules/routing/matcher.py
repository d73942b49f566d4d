"""
Routing rule evaluation.

Everything in this module is pure: callers load the lead, the candidate rules
and the queues, and get back a ``RouteDecision`` describing where the lead
should go. Nothing here touches the database.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Iterable, Sequence
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, field_validator

from leadflow.core.config import settings


class ScheduleWindow(BaseModel):
    days: list[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4, 5, 6])  # 0=Monday .. 6=Sunday
    start: str = "00:00"
    end: str = "00:00"

    @field_validator("days")
    @classmethod
    def _valid_days(cls, v: list[int]):
        if any(d < 0 or d > 6 for d in v):
            raise ValueError("days must be within 0 (Monday) .. 6 (Sunday)")
        return v

    @field_validator("start", "end")
    @classmethod
    def _valid_clock(cls, v: str):
        _parse_clock(v)
        return v

    def contains(self, moment: datetime) -> bool:
        start, end = _parse_clock(self.start), _parse_clock(self.end)
        t = moment.time().replace(tzinfo=None)
        weekday = moment.weekday()
        if start == end:
            return weekday in self.days
        if start < end:
            return weekday in self.days and start <= t < end
        # window crosses midnight: the early-morning part belongs to yesterday's window
        if t >= start:
            return weekday in self.days
        if t < end:
            return (moment - timedelta(days=1)).weekday() in self.days
        return False


class RuleMatch(BaseModel):
    pipeline_id: uuid.UUID | None = None
    source: list[str] | None = None
    campaign_name_contains: str | None = None
    origin_form_id: list[str] | None = None
    tag_in: list[str] | None = None
    city_in: list[str] | None = None
    schedule: ScheduleWindow | None = None


@dataclass
class LeadSnapshot:
    pipeline_id: uuid.UUID | None
    source: str | None
    campaign_name: str | None = None
    origin_form_id: str | None = None
    tags: list[str] = field(default_factory=list)
    city: str | None = None
    at: datetime | None = None


@dataclass
class CandidateRule:
    id: uuid.UUID
    queue_id: uuid.UUID
    priority: int
    created_at: datetime
    match: RuleMatch
    name: str = ""


@dataclass
class RouteDecision:
    queue_id: uuid.UUID | None
    reason: str | None  # rule_match | fallback | None when no route
    rule_id: uuid.UUID | None = None

    @property
    def routed(self) -> bool:
        return self.queue_id is not None


NO_ROUTE = RouteDecision(queue_id=None, reason=None)


def _parse_clock(value: str) -> time:
    try:
        hh, mm = value.split(":")
        return time(int(hh), int(mm))
    except (ValueError, TypeError):
        raise ValueError(f"invalid time of day '{value}', expected HH:MM")


def _fold(values: Iterable[str]) -> set[str]:
    return {v.strip().casefold() for v in values if v is not None}


def local_time(at: datetime | None, tz_name: str | None = None) -> datetime:
    tz = ZoneInfo(tz_name or settings.ROUTING_TIMEZONE)
    if at is None:
        return datetime.now(tz)
    if at.tzinfo is None:
        at = at.replace(tzinfo=ZoneInfo("UTC"))
    return at.astimezone(tz)


def rule_matches(match: RuleMatch, lead: LeadSnapshot, *, tz_name: str | None = None) -> bool:
    """AND of every predicate present on the rule; absent predicates are wildcards."""
    if match.pipeline_id is not None and match.pipeline_id != lead.pipeline_id:
        return False
    if match.source:
        if not lead.source or lead.source.strip().casefold() not in _fold(match.source):
            return False
    if match.campaign_name_contains:
        needle = match.campaign_name_contains.casefold()
        if not lead.campaign_name or needle not in lead.campaign_name.casefold():
            return False
    if match.origin_form_id:
        if not lead.origin_form_id or lead.origin_form_id not in set(match.origin_form_id):
            return False
    if match.tag_in:
        if not _fold(match.tag_in) & _fold(lead.tags or []):
            return False
    if match.city_in:
        if not lead.city or lead.city.strip().casefold() not in _fold(match.city_in):
            return False
    if match.schedule is not None:
        if not match.schedule.contains(local_time(lead.at, tz_name)):
            return False
    return True


def match_route(
    lead: LeadSnapshot,
    rules: Sequence[CandidateRule],
    active_queue_ids: set[uuid.UUID],
    *,
    fallback_queue_id: uuid.UUID | None = None,
    tz_name: str | None = None,
) -> RouteDecision:
    ordered = sorted(rules, key=lambda r: (r.priority, r.created_at))
    for rule in ordered:
        if rule.queue_id not in active_queue_ids:
            continue
        if rule_matches(rule.match, lead, tz_name=tz_name):
            return RouteDecision(queue_id=rule.queue_id, reason="rule_match", rule_id=rule.id)
    if fallback_queue_id is not None and fallback_queue_id in active_queue_ids:
        return RouteDecision(queue_id=fallback_queue_id, reason="fallback")
    return NO_ROUTE
