"""
Metric family definitions.

A metric definition is one of four kinds (count, unique_count, rate,
average), modelled as a closed union discriminated by `kind`. Families group the
definitions that are aggregated together.
"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from dashcore.models.enums import EventType


class CountMetric(BaseModel):
    """Number of matching events per window, overall and per service."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["count"] = "count"
    name: str = Field(min_length=1, description="Metric name")
    event_type: Optional[EventType] = Field(default=None, description="Event type (None = any)")


class UniqueCountMetric(BaseModel):
    """Distinct users or sessions among matching events, overall and per service."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["unique_count"] = "unique_count"
    name: str = Field(min_length=1, description="Metric name")
    event_type: Optional[EventType] = Field(default=None, description="Event type (None = any)")
    key: Literal["user_id", "session_id"] = Field(
        default="user_id", description="Identifier to count distinct values of"
    )


class RateMetric(BaseModel):
    """Ratio of two event counts in the same window (0 when the denominator is 0)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["rate"] = "rate"
    name: str = Field(min_length=1, description="Metric name")
    numerator: EventType = Field(description="Event type counted in the numerator")
    denominator: EventType = Field(description="Event type counted in the denominator")


class AverageMetric(BaseModel):
    """Matching events per distinct user or session in a window (0 when there are none)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["average"] = "average"
    name: str = Field(min_length=1, description="Metric name")
    event_type: Optional[EventType] = Field(default=None, description="Event type (None = any)")
    per: Literal["user_id", "session_id"] = Field(
        default="user_id", description="Identifier whose distinct values divide the count"
    )


MetricDefinition = Annotated[
    Union[CountMetric, UniqueCountMetric, RateMetric, AverageMetric],
    Field(discriminator="kind"),
]


USER_ACTIVITY = (
    CountMetric(name="page_views", event_type=EventType.PAGE_VIEW),
    CountMetric(name="total_events"),
    UniqueCountMetric(name="unique_users", key="user_id"),
    UniqueCountMetric(name="unique_sessions", key="session_id"),
    CountMetric(name="user_registrations", event_type=EventType.USER_REGISTRATION),
    CountMetric(name="user_logins", event_type=EventType.USER_LOGIN),
    AverageMetric(name="avg_events_per_user", per="user_id"),
    AverageMetric(name="avg_events_per_session", per="session_id"),
)

ECOMMERCE = (
    CountMetric(name="product_views", event_type=EventType.PRODUCT_VIEW),
    CountMetric(name="add_to_cart", event_type=EventType.ADD_TO_CART),
    CountMetric(name="checkout_starts", event_type=EventType.CHECKOUT_START),
    CountMetric(name="orders", event_type=EventType.CHECKOUT_COMPLETE),
    RateMetric(
        name="add_to_cart_rate",
        numerator=EventType.ADD_TO_CART,
        denominator=EventType.PRODUCT_VIEW,
    ),
    RateMetric(
        name="checkout_rate",
        numerator=EventType.CHECKOUT_START,
        denominator=EventType.ADD_TO_CART,
    ),
    RateMetric(
        name="order_completion_rate",
        numerator=EventType.CHECKOUT_COMPLETE,
        denominator=EventType.CHECKOUT_START,
    ),
    RateMetric(
        name="overall_conversion_rate",
        numerator=EventType.CHECKOUT_COMPLETE,
        denominator=EventType.PRODUCT_VIEW,
    ),
)

FULFILLMENT = (
    CountMetric(name="orders_created", event_type=EventType.ORDER_CREATED),
    CountMetric(name="orders_fulfilled", event_type=EventType.ORDER_FULFILLED),
    CountMetric(name="orders_cancelled", event_type=EventType.ORDER_CANCELLED),
    CountMetric(name="payments_completed", event_type=EventType.PAYMENT_COMPLETED),
    CountMetric(name="payments_failed", event_type=EventType.PAYMENT_FAILED),
    CountMetric(name="refunds_completed", event_type=EventType.REFUND_COMPLETED),
    CountMetric(name="warehouse_tasks_completed", event_type=EventType.WAREHOUSE_TASK_COMPLETED),
    RateMetric(
        name="order_cancellation_rate",
        numerator=EventType.ORDER_CANCELLED,
        denominator=EventType.ORDER_CREATED,
    ),
    RateMetric(
        name="payment_failure_rate",
        numerator=EventType.PAYMENT_FAILED,
        denominator=EventType.PAYMENT_INITIATED,
    ),
    RateMetric(
        name="warehouse_task_completion_rate",
        numerator=EventType.WAREHOUSE_TASK_COMPLETED,
        denominator=EventType.WAREHOUSE_TASK_CREATED,
    ),
)

PERFORMANCE = (
    CountMetric(name="api_errors", event_type=EventType.SERVICE_ERROR),
    CountMetric(name="health_checks", event_type=EventType.SERVICE_HEALTH_CHECK),
    CountMetric(name="rate_limit_exceeded", event_type=EventType.API_RATE_LIMIT_EXCEEDED),
)

DEFAULT_FAMILIES: dict[str, tuple[MetricDefinition, ...]] = {
    "user_activity": USER_ACTIVITY,
    "ecommerce": ECOMMERCE,
    "fulfillment": FULFILLMENT,
    "performance": PERFORMANCE,
}
