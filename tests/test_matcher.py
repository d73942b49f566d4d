import uuid
from datetime import datetime, timezone

import pytest

from leadflow.modules.routing.matcher import (
    CandidateRule, LeadSnapshot, RuleMatch, ScheduleWindow, match_route, rule_matches,
)

PIPELINE = uuid.uuid4()
WEDNESDAY_10 = datetime(2024, 6, 5, 10, 0, tzinfo=timezone.utc)
SATURDAY_10 = datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)


def rule(queue_id, priority, match=None, created_minute=0):
    return CandidateRule(
        id=uuid.uuid4(),
        queue_id=queue_id,
        priority=priority,
        created_at=datetime(2024, 1, 1, 0, created_minute, tzinfo=timezone.utc),
        match=RuleMatch.model_validate(match or {}),
    )


def snapshot(**kw):
    kw.setdefault("pipeline_id", PIPELINE)
    kw.setdefault("source", "site")
    kw.setdefault("at", WEDNESDAY_10)
    return LeadSnapshot(**kw)


def test_lower_priority_number_wins():
    q1, q2 = uuid.uuid4(), uuid.uuid4()
    rules = [rule(q2, 2), rule(q1, 1)]
    decision = match_route(snapshot(), rules, {q1, q2}, tz_name="UTC")
    assert decision.queue_id == q1
    assert decision.reason == "rule_match"
    assert decision.rule_id == rules[1].id


def test_equal_priority_falls_back_to_creation_order():
    q1, q2 = uuid.uuid4(), uuid.uuid4()
    older = rule(q1, 5, created_minute=1)
    newer = rule(q2, 5, created_minute=2)
    decision = match_route(snapshot(), [newer, older], {q1, q2}, tz_name="UTC")
    assert decision.queue_id == q1


def test_specific_rule_beats_catch_all():
    specific_q, catch_all_q = uuid.uuid4(), uuid.uuid4()
    rules = [
        rule(catch_all_q, 5),
        rule(specific_q, 1, {"source": ["site"], "city_in": ["SP"]}),
    ]
    decision = match_route(snapshot(city="SP"), rules, {specific_q, catch_all_q}, tz_name="UTC")
    assert decision.queue_id == specific_q


def test_catch_all_matches_anything():
    q = uuid.uuid4()
    decision = match_route(snapshot(source="meta", city=None), [rule(q, 10)], {q}, tz_name="UTC")
    assert decision.queue_id == q


def test_weekday_window_rejects_saturday():
    window = ScheduleWindow(days=[0, 1, 2, 3, 4], start="09:00", end="18:00")
    assert window.contains(WEDNESDAY_10)
    assert not window.contains(SATURDAY_10)
    assert not window.contains(datetime(2024, 6, 5, 18, 0))
    assert window.contains(datetime(2024, 6, 5, 9, 0))


def test_schedule_predicate_uses_snapshot_time():
    match = RuleMatch(schedule=ScheduleWindow(days=[0, 1, 2, 3, 4], start="09:00", end="18:00"))
    assert rule_matches(match, snapshot(at=WEDNESDAY_10), tz_name="UTC")
    assert not rule_matches(match, snapshot(at=SATURDAY_10), tz_name="UTC")


def test_schedule_evaluated_in_routing_timezone():
    match = RuleMatch(schedule=ScheduleWindow(days=[2], start="09:00", end="18:00"))
    # 12:00 UTC is 09:00 in Sao Paulo
    noon_utc = datetime(2024, 6, 5, 12, 0, tzinfo=timezone.utc)
    assert rule_matches(match, snapshot(at=noon_utc), tz_name="America/Sao_Paulo")
    early_utc = datetime(2024, 6, 5, 11, 0, tzinfo=timezone.utc)
    assert not rule_matches(match, snapshot(at=early_utc), tz_name="America/Sao_Paulo")


def test_window_crossing_midnight_belongs_to_previous_day():
    friday_night = ScheduleWindow(days=[4], start="22:00", end="02:00")
    assert friday_night.contains(datetime(2024, 5, 31, 23, 0))   # Friday 23:00
    assert friday_night.contains(datetime(2024, 6, 1, 1, 30))    # Saturday 01:30, still Friday's shift
    assert not friday_night.contains(datetime(2024, 6, 1, 23, 0))  # Saturday night
    assert not friday_night.contains(datetime(2024, 5, 31, 1, 0))  # Friday 01:00 is Thursday's shift


def test_equal_start_and_end_means_whole_day():
    window = ScheduleWindow(days=[5], start="00:00", end="00:00")
    assert window.contains(SATURDAY_10)
    assert not window.contains(WEDNESDAY_10)


def test_invalid_clock_rejected():
    with pytest.raises(ValueError):
        ScheduleWindow(start="25:99", end="10:00")


def test_predicates_are_case_insensitive():
    match = RuleMatch(source=["Site"], city_in=["sp"], campaign_name_contains="black")
    assert rule_matches(match, snapshot(source="SITE", city="SP", campaign_name="Promo BLACK Friday"))
    assert not rule_matches(match, snapshot(source="SITE", city="RJ", campaign_name="Promo BLACK Friday"))


def test_tag_in_matches_any_tag():
    match = RuleMatch(tag_in=["vip", "hot"])
    assert rule_matches(match, snapshot(tags=["cold", "hot"]))
    assert not rule_matches(match, snapshot(tags=["cold"]))
    assert not rule_matches(match, snapshot(tags=[]))


def test_origin_form_and_pipeline_predicates():
    other = uuid.uuid4()
    match = RuleMatch(pipeline_id=PIPELINE, origin_form_id=["form-1"])
    assert rule_matches(match, snapshot(origin_form_id="form-1"))
    assert not rule_matches(match, snapshot(origin_form_id="form-2"))
    assert not rule_matches(match, snapshot(pipeline_id=other, origin_form_id="form-1"))


def test_rule_on_inactive_queue_is_skipped():
    inactive_q, active_q = uuid.uuid4(), uuid.uuid4()
    rules = [rule(inactive_q, 1), rule(active_q, 2)]
    decision = match_route(snapshot(), rules, {active_q}, tz_name="UTC")
    assert decision.queue_id == active_q


def test_fallback_when_nothing_matches():
    q, fallback = uuid.uuid4(), uuid.uuid4()
    rules = [rule(q, 1, {"source": ["meta"]})]
    decision = match_route(snapshot(), rules, {q, fallback}, fallback_queue_id=fallback, tz_name="UTC")
    assert decision.queue_id == fallback
    assert decision.reason == "fallback"
    assert decision.rule_id is None


def test_no_route_when_fallback_inactive():
    q, fallback = uuid.uuid4(), uuid.uuid4()
    rules = [rule(q, 1, {"source": ["meta"]})]
    decision = match_route(snapshot(), rules, {q}, fallback_queue_id=fallback, tz_name="UTC")
    assert not decision.routed
    assert decision.reason is None
