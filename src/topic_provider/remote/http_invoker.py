"""HTTP endpoint (API Gateway) backed remote operator."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from topic_provider.config.models import HttpInvokerConfig
from topic_provider.remote.invoker import (
    OperationKind,
    Outcome,
    OutcomeState,
    build_request,
    outcome_from_envelope,
    outcome_from_status,
)

logger = structlog.get_logger()


class HttpInvoker:
    """POSTs the operator envelope to an HTTP endpoint.

    Two response shapes are accepted: the raw proxy envelope
    (``{"statusCode": ..., "body": ...}``) when the endpoint passes the
    function result through, and a plain HTTP response whose status code is
    the operator status.
    """

    def __init__(self, config: HttpInvokerConfig) -> None:
        self._config = config
        headers: dict[str, str] = dict(config.headers)
        if config.auth_token is not None:
            headers["Authorization"] = f"Bearer {config.auth_token.get_secret_value()}"
        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=httpx.Timeout(config.timeout_seconds),
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> HttpInvoker:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def invoke(
        self, kind: OperationKind, parameters: dict[str, Any]
    ) -> Outcome:
        request = build_request(kind, parameters)
        try:
            resp = await self._client.post(
                self._config.url,
                params=request["queryStringParameters"],
                content=request["body"],
                headers={"Content-Type": "application/json"},
            )
        except httpx.TransportError as exc:
            logger.warning(
                "http_invoker.no_response",
                url=self._config.url,
                operation=kind.value,
                error=str(exc),
            )
            return Outcome(kind, OutcomeState.PENDING, note=f"no response: {exc}")

        try:
            data = resp.json()
        except ValueError:
            data = None
        if isinstance(data, dict) and "statusCode" in data:
            return outcome_from_envelope(kind, resp.content)

        logger.debug(
            "invoker.response",
            operation=kind.value,
            status=resp.status_code,
            raw=resp.text,
        )
        if data is None and resp.content:
            # Error statuses keep the text as diagnostic detail
            return outcome_from_status(
                kind, resp.status_code, resp.text, parsed=False
            )
        return outcome_from_status(kind, resp.status_code, data)
