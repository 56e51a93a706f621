"""Tests for engine/funnel.py: ordered step completion and drop-off."""

from datetime import timedelta

import pytest

from conftest import BASE_TIME, PROJECT_ID, make_conversion, make_event
from engine.data_source import InMemoryDataSource
from engine.funnel import FunnelAnalyzer, walk_funnel
from models.attribution import EventType, FunnelStep

STEPS = [
    FunnelStep(step_name="Visit", event_type=EventType.PAGE_VIEW),
    FunnelStep(step_name="View product", event_type=EventType.PRODUCT_VIEW),
    FunnelStep(step_name="Add to cart", event_type=EventType.ADD_TO_CART),
    FunnelStep(step_name="Purchase", event_type=EventType.CONVERSION),
]


def _at(minutes):
    return BASE_TIME + timedelta(minutes=minutes)


@pytest.fixture
def funnel_source():
    """Five users stopping at different steps.

    - u1: completes every step in 30 minutes
    - u2: stops after the cart
    - u3: stops after viewing a product
    - u4: viewed a product before visiting, so only the visit counts
    - u5: cart event only, never enters the first step
    """
    events = [
        make_event("u1-1", "u1", _at(0), event_type=EventType.PAGE_VIEW),
        make_event("u1-2", "u1", _at(10), event_type=EventType.PRODUCT_VIEW),
        make_event("u1-3", "u1", _at(20), event_type=EventType.ADD_TO_CART),
        make_conversion("u1-4", "u1", _at(30), value=20.0),
        make_event("u2-1", "u2", _at(0), event_type=EventType.PAGE_VIEW),
        make_event("u2-2", "u2", _at(5), event_type=EventType.PRODUCT_VIEW),
        make_event("u2-3", "u2", _at(6), event_type=EventType.ADD_TO_CART),
        make_event("u3-1", "u3", _at(1), event_type=EventType.PAGE_VIEW),
        make_event("u3-2", "u3", _at(2), event_type=EventType.PRODUCT_VIEW),
        make_event("u4-1", "u4", _at(1), event_type=EventType.PRODUCT_VIEW),
        make_event("u4-2", "u4", _at(2), event_type=EventType.PAGE_VIEW),
        make_event("u5-1", "u5", _at(3), event_type=EventType.ADD_TO_CART),
        make_event("late", "u3", _at(60 * 24 * 5), event_type=EventType.ADD_TO_CART),
        make_event("elsewhere", "u3", _at(4), event_type=EventType.ADD_TO_CART, project_id="proj-2"),
    ]
    return InMemoryDataSource(events=events)


def _analyze(source, steps=STEPS, window=None):
    start, end = window or (BASE_TIME - timedelta(days=1), BASE_TIME + timedelta(days=1))
    return FunnelAnalyzer(source).analyze_funnel(PROJECT_ID, "Checkout", steps, start, end)


class TestWalkFunnel:
    """Per-user step matching."""

    def test_steps_must_follow_each_other(self):
        events = [
            make_event("p", "u", _at(0), event_type=EventType.PRODUCT_VIEW),
            make_event("v", "u", _at(1), event_type=EventType.PAGE_VIEW),
        ]
        assert [e.id for e in walk_funnel(events, STEPS)] == ["v"]

    def test_full_walk(self):
        events = [
            make_event("v", "u", _at(0), event_type=EventType.PAGE_VIEW),
            make_event("v2", "u", _at(1), event_type=EventType.PAGE_VIEW),
            make_event("p", "u", _at(2), event_type=EventType.PRODUCT_VIEW),
            make_event("c", "u", _at(3), event_type=EventType.ADD_TO_CART),
            make_conversion("b", "u", _at(4)),
        ]
        assert [e.id for e in walk_funnel(events, STEPS)] == ["v", "p", "c", "b"]


class TestAnalyzeFunnel:
    """Step counts, rates and drop-off points."""

    def test_step_counts(self, funnel_source):
        analysis = _analyze(funnel_source)

        assert analysis.total_users == 5
        assert [s.users_entered for s in analysis.steps] == [5, 4, 3, 2]
        assert [s.users_completed for s in analysis.steps] == [4, 3, 2, 1]
        assert [s.drop_off_count for s in analysis.steps] == [1, 1, 1, 1]
        assert [s.step_number for s in analysis.steps] == [1, 2, 3, 4]
        assert analysis.steps[0].completion_rate == pytest.approx(80.0)
        assert analysis.steps[2].completion_rate == pytest.approx(200 / 3)
        assert analysis.steps[3].drop_off_rate == pytest.approx(50.0)

    def test_overall_conversion(self, funnel_source):
        analysis = _analyze(funnel_source)
        assert analysis.total_entered == 5
        assert analysis.total_completed == 1
        assert analysis.conversion_rate == pytest.approx(20.0)
        assert analysis.avg_time_to_complete_minutes == pytest.approx(30.0)

    def test_drop_off_points_ranked_by_rate(self, funnel_source):
        drop_offs = _analyze(funnel_source).drop_off_points
        assert [(d.from_step, d.to_step) for d in drop_offs] == [(3, 4), (2, 3), (1, 2)]
        assert drop_offs[0].drop_off_rate == pytest.approx(50.0)
        assert drop_offs[-1].drop_off_rate == pytest.approx(25.0)

    def test_single_step_funnel(self, funnel_source):
        analysis = _analyze(funnel_source, steps=STEPS[:1])
        assert analysis.total_completed == 4
        assert analysis.drop_off_points == []
        assert analysis.avg_time_to_complete_minutes == pytest.approx(0.0)

    def test_no_events(self, funnel_source):
        start = BASE_TIME + timedelta(days=30)
        analysis = _analyze(funnel_source, window=(start, start + timedelta(days=1)))
        assert analysis.total_users == 0
        assert [s.users_completed for s in analysis.steps] == [0, 0, 0, 0]
        assert analysis.conversion_rate == 0.0
        assert analysis.avg_time_to_complete_minutes is None

    def test_requires_steps(self, funnel_source):
        with pytest.raises(ValueError):
            _analyze(funnel_source, steps=[])

    def test_inverted_range(self, funnel_source):
        with pytest.raises(ValueError):
            _analyze(funnel_source, window=(BASE_TIME, BASE_TIME - timedelta(days=1)))
