"""Tests for engine/calculator.py: the five attribution models and their edge cases."""

from datetime import timedelta

import pytest

from conftest import BASE_TIME, make_conversion, make_event
from engine.calculator import (
    WEIGHT_FUNCTIONS,
    AttributionCalculator,
    calculate,
    resolve_model,
    time_decay_weights,
)
from engine.exceptions import ConfigurationError, InvalidJourneyError, InvalidValueError
from models.attribution import (
    AttributionModelType,
    Journey,
    Linear,
    TimeDecay,
    UShaped,
)

ALL_MODELS = [m.value for m in AttributionModelType]


def _journey(touchpoint_hours, value=100.0):
    """Touchpoints at the given hours before a conversion worth `value`."""
    events = [
        make_event(f"e{i}", "u1", BASE_TIME - timedelta(hours=h), f"ch{i}")
        for i, h in enumerate(touchpoint_hours)
    ]
    events.append(make_conversion("conv", "u1", BASE_TIME, "ch-conv", value))
    return events


# ---------------------------------------------------------------------------
# Conservation and determinism
# ---------------------------------------------------------------------------


class TestConservation:
    """Weights sum to 1 and values sum to the conversion value."""

    @pytest.mark.parametrize("model", ALL_MODELS)
    @pytest.mark.parametrize("hours", [[], [5], [48, 24], [200, 100, 50, 10, 1]])
    def test_weights_and_values_sum(self, model, hours):
        touchpoints = calculate(_journey(hours, 123.45), "conv", model)
        assert len(touchpoints) == len(hours) + 1
        assert sum(tp.weight for tp in touchpoints) == pytest.approx(1.0, abs=1e-9)
        assert sum(tp.attributed_value for tp in touchpoints) == pytest.approx(123.45, abs=1e-9)

    @pytest.mark.parametrize("model", ALL_MODELS)
    def test_single_event_journey_gets_full_credit(self, model):
        touchpoints = calculate(_journey([], 80.0), "conv", model)
        assert len(touchpoints) == 1
        assert touchpoints[0].weight == pytest.approx(1.0)
        assert touchpoints[0].attributed_value == pytest.approx(80.0)

    @pytest.mark.parametrize("model", ALL_MODELS)
    def test_repeated_calls_are_identical(self, model):
        events = _journey([72, 24, 3])
        first = calculate(events, "conv", model)
        second = calculate(events, "conv", model)
        assert [tp.model_dump() for tp in first] == [tp.model_dump() for tp in second]

    def test_input_order_does_not_matter(self):
        events = _journey([72, 24, 3])
        forward = calculate(events, "conv", "time_decay")
        backward = calculate(list(reversed(events)), "conv", "time_decay")
        assert [tp.event_id for tp in forward] == [tp.event_id for tp in backward]
        assert [tp.weight for tp in forward] == [tp.weight for tp in backward]

    def test_positions_are_chronological(self):
        touchpoints = calculate(list(reversed(_journey([72, 24]))), "conv", "linear")
        assert [tp.event_id for tp in touchpoints] == ["e0", "e1", "conv"]
        assert [tp.position for tp in touchpoints] == [1, 2, 3]

    def test_accepts_journey_model(self):
        journey = Journey(user_identifier="u1", conversion_event_id="conv", events=_journey([10]))
        touchpoints = calculate(journey, "conv", Linear())
        assert [tp.weight for tp in touchpoints] == [0.5, 0.5]


# ---------------------------------------------------------------------------
# Individual models
# ---------------------------------------------------------------------------


class TestModels:
    """Weight shapes of each model."""

    def test_first_touch(self):
        touchpoints = calculate(_journey([48, 24]), "conv", "first_touch")
        assert [tp.attributed_value for tp in touchpoints] == [100.0, 0.0, 0.0]

    def test_last_touch_credits_conversion_event(self):
        touchpoints = calculate(_journey([48, 24]), "conv", "last_touch")
        assert [tp.attributed_value for tp in touchpoints] == [0.0, 0.0, 100.0]
        assert touchpoints[-1].channel_id == "ch-conv"

    def test_linear(self):
        touchpoints = calculate(_journey([30, 20, 10]), "conv", AttributionModelType.LINEAR)
        assert all(tp.weight == pytest.approx(0.25) for tp in touchpoints)
        assert all(tp.attributed_value == pytest.approx(25.0) for tp in touchpoints)

    def test_u_shaped_two_events_split_evenly(self):
        touchpoints = calculate(_journey([24]), "conv", UShaped())
        assert [tp.weight for tp in touchpoints] == [0.5, 0.5]

    def test_u_shaped_five_events(self):
        touchpoints = calculate(_journey([40, 30, 20, 10]), "conv", "u_shaped")
        weights = [tp.weight for tp in touchpoints]
        assert weights[0] == pytest.approx(0.4)
        assert weights[-1] == pytest.approx(0.4)
        for middle in weights[1:-1]:
            assert middle == pytest.approx(0.2 / 3)

    def test_time_decay_is_monotonic(self):
        touchpoints = calculate(_journey([500, 168, 24, 1]), "conv", "time_decay")
        weights = [tp.weight for tp in touchpoints]
        assert weights == sorted(weights)
        assert weights[-1] > weights[0]

    def test_time_decay_halves_every_half_life(self):
        events = _journey([168])
        weights = time_decay_weights(TimeDecay(), events, events[-1])
        assert weights[0] / weights[1] == pytest.approx(0.5)

    def test_time_decay_equal_timestamps_get_equal_weight(self):
        events = _journey([12, 12])
        touchpoints = calculate(events, "conv", "time_decay")
        assert touchpoints[0].weight == pytest.approx(touchpoints[1].weight)

    def test_every_weight_function_is_documented(self):
        for weight_function in WEIGHT_FUNCTIONS.values():
            assert weight_function.__doc__, weight_function.__name__

    def test_custom_half_life(self):
        calculator = AttributionCalculator(half_life_hours=24)
        touchpoints = calculator.calculate(_journey([24]), "conv", "time_decay")
        assert touchpoints[0].weight == pytest.approx(1 / 3)
        assert touchpoints[1].weight == pytest.approx(2 / 3)

    def test_hours_before_conversion(self):
        touchpoints = calculate(_journey([36]), "conv", "linear")
        assert touchpoints[0].hours_before_conversion == pytest.approx(36.0)
        assert touchpoints[1].hours_before_conversion == 0.0


# ---------------------------------------------------------------------------
# Errors and degenerate values
# ---------------------------------------------------------------------------


class TestErrors:
    """Rejected journeys and values."""

    def test_empty_journey(self):
        with pytest.raises(InvalidJourneyError):
            calculate([], "conv", "linear")

    def test_conversion_not_in_journey(self):
        with pytest.raises(InvalidJourneyError):
            calculate(_journey([10]), "missing", "linear")

    def test_event_after_conversion(self):
        events = _journey([10])
        events.append(make_event("late", "u1", BASE_TIME + timedelta(hours=1), "ch-late"))
        with pytest.raises(InvalidJourneyError) as exc_info:
            calculate(events, "conv", "last_touch")
        assert exc_info.value.conversion_event_id == "conv"

    def test_touchpoint_sharing_conversion_timestamp_sorts_first(self):
        events = _journey([10])
        events.append(make_event("same", "u1", BASE_TIME, "ch-same"))
        touchpoints = calculate(events, "conv", "last_touch")
        assert [tp.event_id for tp in touchpoints] == ["e0", "same", "conv"]
        assert touchpoints[-1].attributed_value == 100.0

    def test_negative_value(self):
        with pytest.raises(InvalidValueError) as exc_info:
            calculate(_journey([10], value=-5.0), "conv", "linear")
        assert exc_info.value.value == -5.0

    @pytest.mark.parametrize("value", [None, 0.0])
    def test_missing_or_zero_value_gives_zero_credit(self, value):
        touchpoints = calculate(_journey([10, 5], value=value), "conv", "u_shaped")
        assert all(tp.attributed_value == 0.0 for tp in touchpoints)
        assert sum(tp.weight for tp in touchpoints) == pytest.approx(1.0)

    def test_unknown_model_name(self):
        with pytest.raises(ValueError):
            resolve_model("w_shaped")


# ---------------------------------------------------------------------------
# AttributionCalculator
# ---------------------------------------------------------------------------


class TestAttributionCalculator:
    """Result wrappers around calculate()."""

    def test_calculate_result(self):
        result = AttributionCalculator().calculate_result(_journey([10]), "conv", "first_touch")
        assert result.model == AttributionModelType.FIRST_TOUCH
        assert result.conversion_value == 100.0
        assert result.total_weight == pytest.approx(1.0)
        assert result.total_attributed_value == pytest.approx(100.0)

    def test_calculate_all_models(self):
        results = AttributionCalculator().calculate_all_models(_journey([48, 24]), "conv")
        assert set(results) == set(AttributionModelType)
        for result in results.values():
            assert result.total_attributed_value == pytest.approx(100.0)

    def test_resolve_name_uses_configured_half_life(self):
        spec = AttributionCalculator(half_life_hours=12).resolve("time_decay")
        assert isinstance(spec, TimeDecay)
        assert spec.half_life_hours == 12

    def test_non_positive_half_life_rejected(self):
        with pytest.raises(ConfigurationError):
            AttributionCalculator(half_life_hours=0)
