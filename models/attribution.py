"""
Data models for marketing attribution
"""
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Union, Literal, Annotated
from pydantic import BaseModel, Field, field_validator
from enum import Enum
import uuid


def _new_id() -> str:
    return str(uuid.uuid4())


def to_naive_utc(value: datetime) -> datetime:
    """Normalize timezone-aware datetimes to naive UTC (storage convention)"""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class ChannelCategory(str, Enum):
    """Marketing channel categories"""
    ORGANIC = "organic"
    PAID = "paid"
    SOCIAL = "social"
    EMAIL = "email"
    DIRECT = "direct"
    REFERRAL = "referral"
    OTHER = "other"


class EventType(str, Enum):
    """Types of recorded user actions"""
    PAGE_VIEW = "page_view"
    PRODUCT_VIEW = "product_view"
    ADD_TO_CART = "add_to_cart"
    CONVERSION = "conversion"
    CUSTOM = "custom"


class AttributionModelType(str, Enum):
    """Supported attribution models"""
    FIRST_TOUCH = "first_touch"
    LAST_TOUCH = "last_touch"
    LINEAR = "linear"
    TIME_DECAY = "time_decay"
    U_SHAPED = "u_shaped"


class ReportType(str, Enum):
    """Kinds of attribution reports"""
    CHANNEL_PERFORMANCE = "channel_performance"
    ROI = "roi"
    JOURNEY_MAP = "journey_map"
    FUNNEL_ANALYSIS = "funnel_analysis"


# ============================================================================
# Attribution model variants
# ============================================================================

class FirstTouch(BaseModel):
    """100% credit to the first touchpoint"""
    kind: Literal["first_touch"] = "first_touch"


class LastTouch(BaseModel):
    """100% credit to the last touchpoint (the conversion itself)"""
    kind: Literal["last_touch"] = "last_touch"


class Linear(BaseModel):
    """Equal credit to every touchpoint"""
    kind: Literal["linear"] = "linear"


class TimeDecay(BaseModel):
    """Exponential decay: credit halves every half_life_hours before conversion"""
    kind: Literal["time_decay"] = "time_decay"
    half_life_hours: float = Field(default=168.0, gt=0)


class UShaped(BaseModel):
    """Position based: 40% first, 40% last, 20% shared by the middle"""
    kind: Literal["u_shaped"] = "u_shaped"


AttributionModelSpec = Annotated[
    Union[FirstTouch, LastTouch, Linear, TimeDecay, UShaped],
    Field(discriminator="kind")
]


# ============================================================================
# Channels
# ============================================================================

class ChannelDefinition(BaseModel):
    """Input for creating a channel"""
    name: str = Field(..., min_length=1, max_length=255)
    category: ChannelCategory
    source: Optional[str] = Field(None, max_length=255)
    medium: Optional[str] = Field(None, max_length=255)
    campaign: Optional[str] = Field(None, max_length=255)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Channel names are compared verbatim, so strip surrounding whitespace"""
        v = v.strip()
        if not v:
            raise ValueError('Channel name cannot be empty')
        return v


class Channel(ChannelDefinition):
    """A stored marketing source/medium combination"""
    id: str = Field(default_factory=_new_id)
    project_id: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


# ============================================================================
# Events & journeys
# ============================================================================

class AttributionEvent(BaseModel):
    """A single recorded user action"""
    id: str = Field(default_factory=_new_id)
    project_id: str = Field(..., min_length=1)
    user_identifier: str = Field(..., min_length=1)
    channel_id: Optional[str] = None
    event_type: EventType
    event_value: Optional[float] = None
    occurred_at: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('occurred_at', 'created_at')
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return to_naive_utc(v)

    @property
    def is_conversion(self) -> bool:
        return self.event_type == EventType.CONVERSION


class Journey(BaseModel):
    """
    Chronological touchpoints of one user ending with a conversion

    Built by the journey assembler; not persisted.
    """
    user_identifier: str
    conversion_event_id: str
    lookback_start: Optional[datetime] = None
    events: List[AttributionEvent] = Field(default_factory=list)

    @property
    def conversion(self) -> Optional[AttributionEvent]:
        return next((e for e in self.events if e.id == self.conversion_event_id), None)

    @property
    def touchpoint_count(self) -> int:
        return len(self.events)

    @property
    def hours_to_convert(self) -> float:
        """Hours between the first touchpoint and the conversion"""
        conversion = self.conversion
        if not self.events or conversion is None:
            return 0.0
        return (conversion.occurred_at - self.events[0].occurred_at).total_seconds() / 3600.0


class TouchpointWeight(BaseModel):
    """Credit assigned to one journey event"""
    event_id: str
    channel_id: Optional[str] = None
    position: int = Field(..., ge=1)
    weight: float
    attributed_value: float
    hours_before_conversion: float


class AttributionResult(BaseModel):
    """Weights for one conversion under one model"""
    conversion_event_id: str
    model: AttributionModelType
    conversion_value: float = Field(..., ge=0)
    touchpoints: List[TouchpointWeight] = Field(default_factory=list)
    calculated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def total_weight(self) -> float:
        return sum(tp.weight for tp in self.touchpoints)

    @property
    def total_attributed_value(self) -> float:
        return sum(tp.attributed_value for tp in self.touchpoints)


# ============================================================================
# Reports
# ============================================================================

class ChannelBreakdown(BaseModel):
    """Aggregated credit for one channel within a report"""
    channel_id: Optional[str] = None
    channel_name: str
    channel_category: Optional[ChannelCategory] = None
    credited_conversions: float = 0.0
    revenue: float = 0.0
    revenue_percentage: float = 0.0
    touchpoints: int = 0
    avg_time_to_conversion_hours: float = 0.0
    avg_value_per_conversion: float = 0.0
    spend: Optional[float] = None
    roi: Optional[float] = None
    roas: Optional[float] = None
    cost_per_conversion: Optional[float] = None


class ConversionPath(BaseModel):
    """A channel sequence shared by one or more converting journeys"""
    path: List[str]
    path_string: str
    conversions: int = Field(..., ge=0)
    revenue: float = 0.0
    avg_touchpoints: float = 0.0


class AttributionReport(BaseModel):
    """Computed snapshot of channel performance for a date range"""
    id: Optional[str] = None
    project_id: str = Field(..., min_length=1)
    report_type: ReportType = ReportType.CHANNEL_PERFORMANCE
    attribution_model: AttributionModelType
    start_date: datetime
    end_date: datetime
    lookback_days: int = Field(..., ge=1)
    generated_at: datetime = Field(default_factory=datetime.utcnow)

    # Summary metrics
    total_conversions: int = 0
    total_revenue: float = 0.0
    avg_touchpoints: float = 0.0
    avg_time_to_convert_hours: float = 0.0
    skipped_conversions: int = 0
    skipped_conversion_ids: List[str] = Field(default_factory=list)

    # ROI totals (only when spend data was supplied)
    total_spend: Optional[float] = None
    overall_roi: Optional[float] = None
    overall_roas: Optional[float] = None

    channel_breakdown: List[ChannelBreakdown] = Field(default_factory=list)
    top_conversion_paths: List[ConversionPath] = Field(default_factory=list)

    @field_validator('start_date', 'end_date', 'generated_at')
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return to_naive_utc(v)


class ChannelModelCredit(BaseModel):
    """Credit for one channel under one model"""
    channel_id: Optional[str] = None
    channel_name: str
    credited_conversions: float = 0.0
    revenue: float = 0.0


class ModelComparison(BaseModel):
    """Side-by-side channel credit for every attribution model"""
    project_id: str
    start_date: datetime
    end_date: datetime
    total_conversions: int = 0
    total_revenue: float = 0.0
    skipped_conversions: int = 0
    models: Dict[AttributionModelType, List[ChannelModelCredit]] = Field(default_factory=dict)


# ============================================================================
# Journey maps
# ============================================================================

class JourneyTouchpoint(BaseModel):
    """One event of a mapped journey with the credit it received"""
    event_id: str
    event_type: EventType
    channel_id: Optional[str] = None
    channel_name: str
    channel_category: Optional[ChannelCategory] = None
    occurred_at: datetime
    position: int = Field(..., ge=1)
    weight: float
    attributed_value: float
    hours_before_conversion: float


class CustomerJourney(BaseModel):
    """A converting journey laid out event by event"""
    user_identifier: str
    conversion_event_id: str
    conversion_value: float = 0.0
    converted_at: datetime
    journey_start: datetime
    touchpoint_count: int = 0
    hours_to_convert: float = 0.0
    path: List[str] = Field(default_factory=list)
    path_string: str = ""
    touchpoints: List[JourneyTouchpoint] = Field(default_factory=list)


class JourneyMap(BaseModel):
    """Converting journeys of a date range, oldest conversion first"""
    project_id: str
    attribution_model: AttributionModelType
    start_date: datetime
    end_date: datetime
    lookback_days: int = Field(..., ge=1)
    total_journeys: int = 0
    total_revenue: float = 0.0
    skipped_conversions: int = 0
    skipped_conversion_ids: List[str] = Field(default_factory=list)
    journeys: List[CustomerJourney] = Field(default_factory=list)


# ============================================================================
# Funnels
# ============================================================================

class FunnelStep(BaseModel):
    """An ordered funnel step matched by event type"""
    step_name: str = Field(..., min_length=1, max_length=255)
    event_type: EventType


class FunnelStepResult(BaseModel):
    """How many users reached and completed one funnel step"""
    step_number: int = Field(..., ge=1)
    step_name: str
    event_type: EventType
    users_entered: int = 0
    users_completed: int = 0
    drop_off_count: int = 0
    completion_rate: float = 0.0
    drop_off_rate: float = 0.0


class FunnelDropOff(BaseModel):
    """Users lost between two consecutive steps"""
    from_step: int
    to_step: int
    drop_off_count: int
    drop_off_rate: float


class FunnelAnalysis(BaseModel):
    """Step completion and drop-off for a multi-step funnel"""
    project_id: str
    funnel_name: str
    start_date: datetime
    end_date: datetime
    generated_at: datetime = Field(default_factory=datetime.utcnow)
    total_users: int = 0
    total_entered: int = 0
    total_completed: int = 0
    conversion_rate: float = 0.0
    avg_time_to_complete_minutes: Optional[float] = None
    steps: List[FunnelStepResult] = Field(default_factory=list)
    drop_off_points: List[FunnelDropOff] = Field(default_factory=list)


# ============================================================================
# Project status
# ============================================================================

class ProjectStatus(BaseModel):
    """Whether attribution is set up for a project"""
    project_id: str
    enabled: bool = False
    channel_count: int = 0
    report_count: int = 0
    latest_report_at: Optional[datetime] = None
