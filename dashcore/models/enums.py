"""
Enumeration types for dashcore.

All enums inherit from str to ensure JSON serialization compatibility
and direct storage in VARCHAR columns.
"""

from enum import Enum


class EventType(str, Enum):
    """
    Business event types emitted by the platform's services.

    The tag set is closed per release but extensible: new domains add
    members here, and CUSTOM carries anything not yet classified.
    """

    # Browsing and cart
    PAGE_VIEW = "page_view"
    PRODUCT_VIEW = "product_view"
    SEARCH = "search"
    ADD_TO_CART = "add_to_cart"
    REMOVE_FROM_CART = "remove_from_cart"
    CHECKOUT_START = "checkout_start"
    CHECKOUT_COMPLETE = "checkout_complete"

    # User lifecycle
    USER_REGISTRATION = "user_registration"
    USER_LOGIN = "user_login"
    USER_LOGOUT = "user_logout"

    # Catalog
    PRODUCT_CREATE = "product_create"
    PRODUCT_UPDATE = "product_update"
    PRODUCT_DELETE = "product_delete"
    OFFER_CREATE = "offer_create"
    OFFER_UPDATE = "offer_update"
    OFFER_DELETE = "offer_delete"

    # Orders
    ORDER_CREATED = "order_created"
    ORDER_UPDATED = "order_updated"
    ORDER_FULFILLED = "order_fulfilled"
    ORDER_CANCELLED = "order_cancelled"

    # Payments
    PAYMENT_INITIATED = "payment_initiated"
    PAYMENT_COMPLETED = "payment_completed"
    PAYMENT_FAILED = "payment_failed"
    REFUND_INITIATED = "refund_initiated"
    REFUND_COMPLETED = "refund_completed"

    # Inventory and warehouse
    INVENTORY_UPDATED = "inventory_updated"
    LOW_STOCK_ALERT = "low_stock_alert"
    OUT_OF_STOCK = "out_of_stock"
    WAREHOUSE_TASK_CREATED = "warehouse_task_created"
    WAREHOUSE_TASK_COMPLETED = "warehouse_task_completed"

    # Platform health
    SERVICE_ERROR = "service_error"
    SERVICE_HEALTH_CHECK = "service_health_check"
    API_RATE_LIMIT_EXCEEDED = "api_rate_limit_exceeded"

    CUSTOM = "custom"


class MetricType(str, Enum):
    """Kind of aggregation that produced a metric value."""

    COUNT = "count"
    SUM = "sum"
    AVERAGE = "average"
    MIN = "min"
    MAX = "max"
    MEDIAN = "median"
    PERCENTILE = "percentile"
    RATE = "rate"
    RATIO = "ratio"
    UNIQUE_COUNT = "unique_count"
    HISTOGRAM = "histogram"
    CUSTOM = "custom"


class TimeGranularity(str, Enum):
    """Calendar unit of a bucket's width."""

    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"
    CUSTOM = "custom"


class KPIStatus(str, Enum):
    """
    Status tier of a KPI.

    UNKNOWN is the initial state and the fallback when the value or the
    thresholds are absent.
    """

    EXCELLENT = "excellent"
    GOOD = "good"
    WARNING = "warning"
    CRITICAL = "critical"
    UNKNOWN = "unknown"


class TrendDirection(str, Enum):
    """Direction of change between periods."""

    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"
    VOLATILE = "volatile"


class MetricDataType(str, Enum):
    """Declared data type of a domain metric or KPI value."""

    INTEGER = "integer"
    DOUBLE = "double"
    STRING = "string"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    DURATION = "duration"
    JSON = "json"
    ARRAY = "array"


class RunStatus(str, Enum):
    """Lifecycle status of an aggregation run."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
