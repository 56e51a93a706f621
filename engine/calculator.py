"""
Attribution Calculator

Splits a conversion's value across the events of its journey:
- First-touch: 100% credit to the first event
- Last-touch: 100% credit to the last event (the conversion)
- Linear: equal credit to every event
- Time-decay: credit halves every half-life (7 days) before the conversion
- U-shaped: 40% first, 40% last, 20% shared by the middle events

Every function here is pure: the only time input is the timestamps already
present on the events.
"""
from typing import List, Dict, Optional, Sequence, Union, Callable
from datetime import datetime

from models.attribution import (
    AttributionEvent, AttributionModelType, AttributionResult, Journey,
    TouchpointWeight, FirstTouch, LastTouch, Linear, TimeDecay, UShaped,
    AttributionModelSpec
)
from engine.exceptions import InvalidJourneyError, InvalidValueError, ConfigurationError

DEFAULT_HALF_LIFE_HOURS = 168.0

U_SHAPED_ENDPOINT_SHARE = 0.4
U_SHAPED_MIDDLE_SHARE = 0.2

ModelLike = Union[AttributionModelSpec, AttributionModelType, str]
JourneyLike = Union[Journey, Sequence[AttributionEvent]]


def hours_between(start: datetime, end: datetime) -> float:
    """Signed hours from start to end"""
    return (end - start).total_seconds() / 3600.0


# ============================================================================
# Weight functions (one per model variant)
# ============================================================================

def first_touch_weights(model: FirstTouch, events: Sequence[AttributionEvent],
                        conversion: AttributionEvent) -> List[float]:
    """Full credit to the first event of the journey"""
    weights = [0.0] * len(events)
    weights[0] = 1.0
    return weights


def last_touch_weights(model: LastTouch, events: Sequence[AttributionEvent],
                       conversion: AttributionEvent) -> List[float]:
    """Full credit to the last event, which is the conversion itself"""
    weights = [0.0] * len(events)
    weights[-1] = 1.0
    return weights


def linear_weights(model: Linear, events: Sequence[AttributionEvent],
                   conversion: AttributionEvent) -> List[float]:
    """Equal credit to every event"""
    return [1.0 / len(events)] * len(events)


def time_decay_weights(model: TimeDecay, events: Sequence[AttributionEvent],
                       conversion: AttributionEvent) -> List[float]:
    """raw = 2^(-hours_before_conversion / half_life), normalized to sum to 1"""
    raw = [
        2.0 ** (-hours_between(event.occurred_at, conversion.occurred_at) / model.half_life_hours)
        for event in events
    ]
    total = sum(raw)
    return [r / total for r in raw]


def u_shaped_weights(model: UShaped, events: Sequence[AttributionEvent],
                     conversion: AttributionEvent) -> List[float]:
    """40% to the first and last events, 20% split across the middle ones"""
    count = len(events)
    if count == 1:
        return [1.0]
    if count == 2:
        return [0.5, 0.5]

    middle_weight = U_SHAPED_MIDDLE_SHARE / (count - 2)
    weights = [middle_weight] * count
    weights[0] = U_SHAPED_ENDPOINT_SHARE
    weights[-1] = U_SHAPED_ENDPOINT_SHARE
    return weights


WEIGHT_FUNCTIONS: Dict[type, Callable[..., List[float]]] = {
    FirstTouch: first_touch_weights,
    LastTouch: last_touch_weights,
    Linear: linear_weights,
    TimeDecay: time_decay_weights,
    UShaped: u_shaped_weights,
}


def resolve_model(model: ModelLike, half_life_hours: Optional[float] = None) -> AttributionModelSpec:
    """
    Turn a model name, enum member or variant into a model variant

    Args:
        model: "linear", AttributionModelType.LINEAR, Linear(), ...
        half_life_hours: Half-life used when the name resolves to time-decay

    Raises:
        ValueError: If the model name is unknown
    """
    if isinstance(model, tuple(WEIGHT_FUNCTIONS)):
        return model

    model_type = AttributionModelType(model)
    if model_type == AttributionModelType.FIRST_TOUCH:
        return FirstTouch()
    if model_type == AttributionModelType.LAST_TOUCH:
        return LastTouch()
    if model_type == AttributionModelType.LINEAR:
        return Linear()
    if model_type == AttributionModelType.TIME_DECAY:
        return TimeDecay(half_life_hours=half_life_hours or DEFAULT_HALF_LIFE_HOURS)
    return UShaped()


def model_weights(model: AttributionModelSpec, events: Sequence[AttributionEvent],
                  conversion: AttributionEvent) -> List[float]:
    """Dispatch to the weight function of the model variant"""
    return WEIGHT_FUNCTIONS[type(model)](model, events, conversion)


# ============================================================================
# Public calculation
# ============================================================================

def _journey_events(journey: JourneyLike, conversion_event_id: str) -> List[AttributionEvent]:
    if isinstance(journey, Journey):
        events = journey.events
    else:
        events = list(journey)
    # The conversion sorts after touchpoints sharing its timestamp
    return sorted(events, key=lambda e: (e.occurred_at, e.id == conversion_event_id))


def calculate(journey: JourneyLike, conversion_event_id: str, model: ModelLike) -> List[TouchpointWeight]:
    """
    Assign weights and attributed values to every event of a journey

    Args:
        journey: Journey or sequence of events (sorted by occurred_at here)
        conversion_event_id: ID of the conversion event inside the journey
        model: Model variant, AttributionModelType or model name

    Returns:
        One TouchpointWeight per event in chronological order

    Raises:
        InvalidJourneyError: Empty journey, conversion not in journey, or
            events occurring after the conversion
        InvalidValueError: Conversion value is negative
    """
    events = _journey_events(journey, conversion_event_id)
    if not events:
        raise InvalidJourneyError(conversion_event_id, "journey is empty")

    conversion = next((e for e in events if e.id == conversion_event_id), None)
    if conversion is None:
        raise InvalidJourneyError(conversion_event_id, "conversion event is not part of the journey")
    if events[-1].id != conversion_event_id:
        raise InvalidJourneyError(conversion_event_id, "journey has events after the conversion")

    value = conversion.event_value if conversion.event_value is not None else 0.0
    if value < 0:
        raise InvalidValueError(conversion_event_id, value)

    spec = resolve_model(model)
    weights = model_weights(spec, events, conversion)
    values = [w * value for w in weights]

    # Push float residue onto the last touchpoint so values sum to the conversion value
    residual = value - sum(values)
    if residual:
        values[-1] += residual

    return [
        TouchpointWeight(
            event_id=event.id,
            channel_id=event.channel_id,
            position=index + 1,
            weight=weights[index],
            attributed_value=values[index],
            hours_before_conversion=hours_between(event.occurred_at, conversion.occurred_at)
        )
        for index, event in enumerate(events)
    ]


class AttributionCalculator:
    """Calculates attribution credits with a configured time-decay half-life"""

    ALL_MODELS = [
        AttributionModelType.FIRST_TOUCH,
        AttributionModelType.LAST_TOUCH,
        AttributionModelType.LINEAR,
        AttributionModelType.TIME_DECAY,
        AttributionModelType.U_SHAPED,
    ]

    def __init__(self, half_life_hours: float = DEFAULT_HALF_LIFE_HOURS):
        if half_life_hours <= 0:
            raise ConfigurationError(f"time-decay half-life must be positive, got {half_life_hours}")
        self.half_life_hours = half_life_hours

    def resolve(self, model: ModelLike) -> AttributionModelSpec:
        return resolve_model(model, self.half_life_hours)

    def calculate(self, journey: JourneyLike, conversion_event_id: str,
                  model: ModelLike) -> List[TouchpointWeight]:
        return calculate(journey, conversion_event_id, self.resolve(model))

    def calculate_result(self, journey: JourneyLike, conversion_event_id: str,
                         model: ModelLike) -> AttributionResult:
        """Same as calculate() but wrapped with the conversion value and model"""
        spec = self.resolve(model)
        touchpoints = calculate(journey, conversion_event_id, spec)
        conversion = _journey_events(journey, conversion_event_id)[-1]
        return AttributionResult(
            conversion_event_id=conversion_event_id,
            model=AttributionModelType(spec.kind),
            conversion_value=conversion.event_value or 0.0,
            touchpoints=touchpoints
        )

    def calculate_all_models(self, journey: JourneyLike,
                             conversion_event_id: str) -> Dict[AttributionModelType, AttributionResult]:
        """Weights of the same journey under every model"""
        return {
            model: self.calculate_result(journey, conversion_event_id, model)
            for model in self.ALL_MODELS
        }
