"""Pydantic configuration models for the topic provider."""

from __future__ import annotations

from enum import StrEnum
from typing import Self

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator


class InvokerBackend(StrEnum):
    """Supported remote operator backends."""

    LAMBDA = "lambda"
    HTTP = "http"


class LambdaConfig(BaseModel):
    """AWS Lambda remote operator settings."""

    function_name: str = Field(default="test-lambda-mks", min_length=1)
    region: str = "us-east-1"
    # Override for LocalStack or VPC endpoints
    endpoint_url: str | None = None
    connect_timeout_seconds: float = Field(default=10.0, gt=0)
    # Synchronous invocations block until the function returns
    read_timeout_seconds: float = Field(default=120.0, gt=0)


class HttpInvokerConfig(BaseModel):
    """HTTP endpoint (e.g. API Gateway) fronting the remote operator."""

    url: str
    timeout_seconds: float = Field(default=30.0, gt=0)
    headers: dict[str, str] = Field(default_factory=dict)
    auth_token: SecretStr | None = None


class PollPolicy(BaseModel):
    """Delay / interval / timeout policy for one wait loop."""

    timeout_seconds: float = Field(default=30.0, gt=0)
    delay_seconds: float = Field(default=0.0, ge=0.0)
    interval_seconds: float = Field(default=2.0, ge=0.0)


class TimeoutsConfig(BaseModel):
    """Per-operation poll policies.

    Creation is expected to be fast; deletion may be asynchronous on the
    broker side, so it gets the longest deadline.
    """

    create: PollPolicy = PollPolicy(
        timeout_seconds=30.0, delay_seconds=1.0, interval_seconds=2.0
    )
    read: PollPolicy = PollPolicy(
        timeout_seconds=30.0, delay_seconds=0.0, interval_seconds=1.0
    )
    update: PollPolicy = PollPolicy(
        timeout_seconds=120.0, delay_seconds=1.0, interval_seconds=2.0
    )
    delete: PollPolicy = PollPolicy(
        timeout_seconds=300.0, delay_seconds=3.0, interval_seconds=2.0
    )


class ProviderConfig(BaseModel):
    """Provider-wide configuration passed explicitly to the invoker."""

    backend: InvokerBackend = InvokerBackend.LAMBDA
    lambda_: LambdaConfig | None = Field(default=LambdaConfig(), alias="lambda")
    http: HttpInvokerConfig | None = None
    timeouts: TimeoutsConfig = TimeoutsConfig()
    # In-place replication factor changes need KIP-455 (Kafka 2.4.0)
    min_replication_factor_alter_version: str = "2.4.0"

    model_config = {"populate_by_name": True}

    @field_validator("min_replication_factor_alter_version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        parts = v.split(".")
        if not all(p.isdigit() for p in parts):
            msg = f"min_replication_factor_alter_version '{v}' must be dotted numeric"
            raise ValueError(msg)
        return v

    @model_validator(mode="after")
    def check_backend_requirements(self) -> Self:
        """Ensure the selected backend has its sub-config."""
        if self.backend == InvokerBackend.LAMBDA and self.lambda_ is None:
            msg = "lambda config is required when backend is 'lambda'"
            raise ValueError(msg)
        if self.backend == InvokerBackend.HTTP and self.http is None:
            msg = "http config is required when backend is 'http'"
            raise ValueError(msg)
        return self


class TopicSpec(BaseModel, extra="forbid"):
    """Desired state of one topic as supplied by the host."""

    name: str = Field(min_length=1)
    partitions: int = Field(ge=1)
    replication_factor: int = Field(ge=1)
    config: dict[str, str | None] = Field(default_factory=dict)
    bootstrap_server: str = Field(min_length=1)

    @field_validator("config", mode="before")
    @classmethod
    def stringify_config_values(cls, v: object) -> object:
        """Accept YAML scalars (``retention.ms: 86400000``) as Kafka strings."""
        if not isinstance(v, dict):
            return v
        out: dict[str, str | None] = {}
        for key, value in v.items():
            if value is None:
                out[str(key)] = None
            elif isinstance(value, bool):
                out[str(key)] = "true" if value else "false"
            elif isinstance(value, (int, float)):
                out[str(key)] = str(value)
            else:
                out[str(key)] = value
        return out
