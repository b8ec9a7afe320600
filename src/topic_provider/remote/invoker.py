"""Remote operator invocation protocol and response normalisation.

Every backend (Lambda, HTTP) performs exactly one request/response exchange
per :meth:`RemoteInvoker.invoke` call and reduces whatever came back to an
:class:`Outcome`. Retrying is left to
:func:`topic_provider.remote.waiter.wait_for`.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

import structlog

logger = structlog.get_logger()


class OperationKind(StrEnum):
    """Discriminator sent as ``type_query`` to the remote operator."""

    LIST_TOPICS = "listTopics"
    CREATE_TOPIC = "createTopic"
    READ_TOPIC = "readTopic"
    UPDATE_TOPIC = "updateTopic"
    ALTER_REPLICATION_FACTOR = "alterReplicationFactor"
    ADD_PARTITIONS = "addPartitions"
    DELETE_TOPIC = "deleteTopic"
    DESCRIBE_CLUSTER = "describeCluster"


class OutcomeState(StrEnum):
    SETTLED = "settled"
    PENDING = "pending"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class Outcome:
    """Normalised result of one remote invocation."""

    kind: OperationKind
    state: OutcomeState
    status_code: int | None = None
    payload: Any = None
    note: str = ""

    @property
    def settled(self) -> bool:
        return self.state == OutcomeState.SETTLED

    @property
    def failed(self) -> bool:
        return self.state == OutcomeState.FAILED

    @property
    def not_found(self) -> bool:
        return self.state == OutcomeState.FAILED and self.status_code == 404


@runtime_checkable
class RemoteInvoker(Protocol):
    """Capability interface for reaching the remote operator."""

    async def invoke(
        self, kind: OperationKind, parameters: dict[str, Any]
    ) -> Outcome:
        """Perform one request/response exchange and normalise the result."""
        ...


def build_request(kind: OperationKind, parameters: dict[str, Any]) -> dict[str, Any]:
    """Build the API-Gateway-proxy shaped envelope the operator expects."""
    return {
        "queryStringParameters": {"type_query": kind.value},
        "body": json.dumps(parameters, sort_keys=True),
    }


def _decode_body(body: Any) -> tuple[bool, Any]:
    """Proxy integrations return ``body`` as a JSON string; unwrap it."""
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8")
    if isinstance(body, str):
        if not body:
            return True, None
        try:
            return True, json.loads(body)
        except json.JSONDecodeError:
            return False, body
    return True, body


def outcome_from_envelope(kind: OperationKind, raw: bytes | str | None) -> Outcome:
    """Turn a raw operator response into an :class:`Outcome`.

    A response that cannot be decoded is never promoted to ``settled``; it
    stays ``pending`` with a note so the poll loop can try again.
    """
    logger.debug("invoker.response", operation=kind.value, raw=raw)
    if raw is None or raw in (b"", ""):
        return Outcome(kind, OutcomeState.PENDING, note="empty response")

    try:
        envelope = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        return Outcome(
            kind,
            OutcomeState.PENDING,
            payload=raw,
            note=f"undecodable response: {exc}",
        )

    if not isinstance(envelope, dict) or "statusCode" not in envelope:
        return Outcome(
            kind,
            OutcomeState.PENDING,
            payload=envelope,
            note="response has no statusCode",
        )

    try:
        status = int(envelope["statusCode"])
    except (TypeError, ValueError):
        return Outcome(
            kind,
            OutcomeState.PENDING,
            payload=envelope,
            note=f"non-numeric statusCode {envelope['statusCode']!r}",
        )

    parsed, body = _decode_body(envelope.get("body"))
    return outcome_from_status(kind, status, body, parsed=parsed)


def outcome_from_status(
    kind: OperationKind, status: int, body: Any, *, parsed: bool = True
) -> Outcome:
    if 200 <= status < 300:
        if not parsed:
            return Outcome(
                kind,
                OutcomeState.PENDING,
                status_code=status,
                payload=body,
                note="success status with unparseable body",
            )
        return Outcome(kind, OutcomeState.SETTLED, status_code=status, payload=body)
    return Outcome(kind, OutcomeState.FAILED, status_code=status, payload=body)
