"""AWS Lambda backed remote operator."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from topic_provider.config.models import LambdaConfig
from topic_provider.remote.invoker import (
    OperationKind,
    Outcome,
    OutcomeState,
    build_request,
    outcome_from_envelope,
)

logger = structlog.get_logger()


class LambdaInvoker:
    """Invokes the topic operator function synchronously (``RequestResponse``).

    botocore's own retry handler is disabled: a single ``invoke`` is one
    exchange, and re-polling is the waiter's job.
    """

    def __init__(self, config: LambdaConfig | None = None) -> None:
        self._config = config or LambdaConfig()
        self._client = None

    def _get_client(self):  # noqa: ANN202
        if self._client is None:
            self._client = boto3.client(
                "lambda",
                region_name=self._config.region,
                endpoint_url=self._config.endpoint_url,
                config=Config(
                    connect_timeout=self._config.connect_timeout_seconds,
                    read_timeout=self._config.read_timeout_seconds,
                    retries={"total_max_attempts": 1, "mode": "standard"},
                ),
            )
        return self._client

    async def invoke(
        self, kind: OperationKind, parameters: dict[str, Any]
    ) -> Outcome:
        client = self._get_client()
        request = build_request(kind, parameters)
        loop = asyncio.get_running_loop()
        logger.debug(
            "lambda_invoker.invoke",
            function=self._config.function_name,
            operation=kind.value,
        )
        try:
            resp = await loop.run_in_executor(
                None,
                lambda: client.invoke(
                    FunctionName=self._config.function_name,
                    InvocationType="RequestResponse",
                    Payload=json.dumps(request).encode("utf-8"),
                ),
            )
        except (ConnectTimeoutError, ReadTimeoutError, EndpointConnectionError) as exc:
            logger.warning(
                "lambda_invoker.no_response",
                function=self._config.function_name,
                operation=kind.value,
                error=str(exc),
            )
            return Outcome(kind, OutcomeState.PENDING, note=f"no response: {exc}")
        except ClientError as exc:
            status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            logger.error(
                "lambda_invoker.client_error",
                function=self._config.function_name,
                operation=kind.value,
                status=status,
                error=str(exc),
            )
            return Outcome(
                kind,
                OutcomeState.FAILED,
                status_code=status,
                payload=exc.response.get("Error"),
                note="lambda invoke rejected",
            )

        raw = resp["Payload"].read()
        function_error = resp.get("FunctionError")
        if function_error:
            logger.debug("invoker.response", operation=kind.value, raw=raw)
            # Unhandled exception inside the function; the payload is the
            # Lambda error document, not an operator envelope.
            try:
                detail: Any = json.loads(raw)
            except (json.JSONDecodeError, UnicodeDecodeError):
                detail = raw
            return Outcome(
                kind,
                OutcomeState.FAILED,
                status_code=resp.get("StatusCode"),
                payload=detail,
                note=f"function error: {function_error}",
            )
        return outcome_from_envelope(kind, raw)
