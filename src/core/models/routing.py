"""
Routing models: where transformed records go and how failed deliveries
are retried and dead-lettered.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .base import GatewayModel


class TargetType(str, Enum):
    """Delivery transports."""

    WEBHOOK = "webhook"
    API = "api"
    KAFKA = "kafka"
    DATABASE = "database"
    FILE = "file"


# Long names used by some registry documents
TARGET_TYPE_ALIASES = {
    "kafkaTopic": TargetType.KAFKA,
    "kafka_topic": TargetType.KAFKA,
    "databaseQueue": TargetType.DATABASE,
    "database_queue": TargetType.DATABASE,
    "fileDrop": TargetType.FILE,
    "file_drop": TargetType.FILE,
}


class Condition(GatewayModel):
    """Field comparison evaluated against a record."""

    field: str = Field(..., min_length=1)
    operator: str
    value: Any = None


class RetryPolicy(GatewayModel):
    """
    Exponential backoff policy for one target.

    Attributes:
        max_attempts: Total deliveries (first attempt included) before dead-lettering
        backoff_multiplier: Delay growth factor per attempt
        initial_delay: Delay before the first retry, in ms
    """

    max_attempts: int = Field(3, ge=1)
    backoff_multiplier: float = Field(2.0, ge=1.0)
    initial_delay: int = Field(1000, ge=0)

    def delay_ms(self, attempt: int) -> float:
        """Delay after ``attempt`` deliveries have failed."""
        return self.initial_delay * self.backoff_multiplier ** (attempt - 1)


class RouteTarget(GatewayModel):
    """
    A delivery destination.

    Attributes:
        type: webhook, api, kafka, database or file
        endpoint: URL (``url|METHOD`` for api), topic, queue name or file path
        condition: Optional condition for rule-less routing
        retry_policy: Optional retry policy; without it failures are final
    """

    type: TargetType
    endpoint: str = Field(..., min_length=1)
    condition: Condition | None = None
    transformation: str | None = None
    retry_policy: RetryPolicy | None = None

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v):
        if isinstance(v, str) and v in TARGET_TYPE_ALIASES:
            return TARGET_TYPE_ALIASES[v]
        return v


class RoutingRule(GatewayModel):
    """
    Evaluated in declaration order before target conditions.

    Attributes:
        condition: When the rule applies
        action: route (pin ``target``), discard (drop the record),
                alert (emit routing.alert), store (park in the key/value store)
        target: Endpoint of the pinned target for ``route``
        parameters: Action parameters (``key``/``ttl`` for store)
    """

    condition: Condition
    action: Literal["route", "discard", "alert", "store"]
    target: str | None = None
    parameters: dict[str, Any] | None = None


class DeadLetterQueueConfig(GatewayModel):
    """
    Dead-letter behaviour.

    Attributes:
        enabled: Persist exhausted messages in the store
        ttl_seconds: How long dead letters are kept
    """

    enabled: bool = True
    ttl_seconds: int = Field(86400, gt=0)


class RoutingConfig(GatewayModel):
    """Targets, rules and dead-letter settings for one endpoint."""

    targets: list[RouteTarget] = Field(default_factory=list)
    rules: list[RoutingRule] = Field(default_factory=list)
    dead_letter_queue: DeadLetterQueueConfig = Field(default_factory=DeadLetterQueueConfig)

    def find_target(self, endpoint: str) -> RouteTarget | None:
        for target in self.targets:
            if target.endpoint == endpoint:
                return target
        return None


class RoutingResult(BaseModel):
    """
    Outcome of routing one record (ephemeral).

    ``success`` is True when no resolved target failed; a record that
    matched no target (or was discarded) is a success with zero targets.
    """

    success: bool = False
    routed_targets: list[str] = Field(default_factory=list)
    failed_targets: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    total_targets: int = 0
    processing_time_ms: float = 0.0


class RetryContext(BaseModel):
    """
    One outstanding failed delivery.

    At most one context exists per (endpoint_id, target endpoint) key; a new
    failure for the key replaces the previous context.

    Attributes:
        endpoint_id: Source endpoint of the record
        target: Full target definition, so the retry uses the right transport
        data: Record being delivered
        attempt: Deliveries already made for this record
        max_attempts: Ceiling copied from the target's policy
        next_retry_at: When the retry tick may attempt again
        last_error: Error of the most recent failed delivery
        dead_letter: Where the record goes once the budget is spent
    """

    endpoint_id: str
    target: RouteTarget
    data: Any
    attempt: int = Field(..., ge=1)
    max_attempts: int = Field(..., ge=1)
    next_retry_at: datetime
    last_error: str | None = None
    dead_letter: DeadLetterQueueConfig = Field(default_factory=DeadLetterQueueConfig)

    @property
    def key(self) -> str:
        return retry_key(self.endpoint_id, self.target.endpoint)


def retry_key(endpoint_id: str, target_endpoint: str) -> str:
    return f"{endpoint_id}:{target_endpoint}"


class DeadLetterEntry(BaseModel):
    """
    A delivery that exhausted its retry budget.

    Attributes:
        original_target: Endpoint of the target that kept failing
        endpoint_id: Source endpoint of the record
        data: Record that was never delivered
        error: Last delivery error
        attempts: Deliveries made before giving up
        timestamp: When the message was dead-lettered
        target: Full target definition, used by administrative re-drive
    """

    model_config = ConfigDict(ser_json_bytes="base64")

    original_target: str
    endpoint_id: str
    data: Any
    error: str
    attempts: int
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    target: RouteTarget | None = None
