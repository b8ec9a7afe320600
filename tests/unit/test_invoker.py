"""Unit tests for remote operator invocation and outcome decoding."""

from __future__ import annotations

import io
import json
from typing import Any
from unittest.mock import MagicMock

import httpx
import pytest
import respx
from botocore.exceptions import ClientError, ReadTimeoutError

from topic_provider.config.models import (
    HttpInvokerConfig,
    InvokerBackend,
    LambdaConfig,
    ProviderConfig,
)
from topic_provider.remote.factory import create_invoker
from topic_provider.remote.http_invoker import HttpInvoker
from topic_provider.remote.invoker import (
    OperationKind,
    OutcomeState,
    RemoteInvoker,
    build_request,
    outcome_from_envelope,
)
from topic_provider.remote.lambda_invoker import LambdaInvoker

READ = OperationKind.READ_TOPIC
OPERATOR_URL = "https://operator.example.com/topics"


def _envelope(status: Any, body: Any) -> bytes:
    return json.dumps({"statusCode": status, "body": body}).encode()


class TestBuildRequest:
    def test_proxy_shaped_envelope(self):
        request = build_request(OperationKind.CREATE_TOPIC, {"name": "orders"})
        assert request["queryStringParameters"] == {"type_query": "createTopic"}
        assert json.loads(request["body"]) == {"name": "orders"}


class TestOutcomeFromEnvelope:
    def test_success_with_json_string_body(self):
        outcome = outcome_from_envelope(READ, _envelope(200, json.dumps({"a": 1})))
        assert outcome.state == OutcomeState.SETTLED
        assert outcome.payload == {"a": 1}
        assert outcome.status_code == 200

    def test_success_with_object_body(self):
        outcome = outcome_from_envelope(READ, _envelope(201, {"a": 1}))
        assert outcome.settled
        assert outcome.payload == {"a": 1}

    def test_success_with_unparseable_body_stays_pending(self):
        outcome = outcome_from_envelope(READ, _envelope(200, "{not json"))
        assert outcome.state == OutcomeState.PENDING
        assert outcome.payload == "{not json"
        assert "unparseable" in outcome.note

    def test_error_status_fails_with_payload(self):
        outcome = outcome_from_envelope(READ, _envelope(500, "broker unavailable"))
        assert outcome.failed
        assert outcome.payload == "broker unavailable"
        assert not outcome.not_found

    def test_not_found(self):
        outcome = outcome_from_envelope(READ, _envelope(404, {"error": "missing"}))
        assert outcome.failed
        assert outcome.not_found

    @pytest.mark.parametrize("raw", [None, b"", "", b"\xff\xfe", b"<html>"])
    def test_absent_or_undecodable_response_is_pending(self, raw: Any):
        outcome = outcome_from_envelope(READ, raw)
        assert outcome.state == OutcomeState.PENDING
        assert outcome.note

    def test_missing_status_code_is_pending(self):
        outcome = outcome_from_envelope(READ, json.dumps({"body": "{}"}))
        assert outcome.state == OutcomeState.PENDING
        assert "statusCode" in outcome.note

    def test_non_numeric_status_code_is_pending(self):
        outcome = outcome_from_envelope(READ, _envelope("OK", "{}"))
        assert outcome.state == OutcomeState.PENDING


def _lambda_response(payload: bytes, function_error: str | None = None) -> dict:
    resp: dict[str, Any] = {"StatusCode": 200, "Payload": io.BytesIO(payload)}
    if function_error:
        resp["FunctionError"] = function_error
    return resp


@pytest.mark.asyncio
class TestLambdaInvoker:
    async def test_invokes_request_response(self):
        invoker = LambdaInvoker(LambdaConfig(function_name="topic-operator"))
        mock_client = MagicMock()
        mock_client.invoke.return_value = _lambda_response(
            _envelope(200, json.dumps({"name": "orders"}))
        )
        invoker._client = mock_client

        outcome = await invoker.invoke(READ, {"name": "orders"})

        assert outcome.settled
        assert outcome.payload == {"name": "orders"}
        kwargs = mock_client.invoke.call_args.kwargs
        assert kwargs["FunctionName"] == "topic-operator"
        assert kwargs["InvocationType"] == "RequestResponse"
        sent = json.loads(kwargs["Payload"])
        assert sent["queryStringParameters"] == {"type_query": "readTopic"}
        assert json.loads(sent["body"]) == {"name": "orders"}

    async def test_function_error_fails(self):
        invoker = LambdaInvoker()
        mock_client = MagicMock()
        mock_client.invoke.return_value = _lambda_response(
            json.dumps({"errorMessage": "KafkaTimeoutError"}).encode(),
            function_error="Unhandled",
        )
        invoker._client = mock_client

        outcome = await invoker.invoke(READ, {"name": "orders"})

        assert outcome.failed
        assert outcome.payload == {"errorMessage": "KafkaTimeoutError"}
        assert "Unhandled" in outcome.note

    async def test_undecodable_payload_is_pending(self):
        invoker = LambdaInvoker()
        mock_client = MagicMock()
        mock_client.invoke.return_value = _lambda_response(b"null-ish garbage")
        invoker._client = mock_client

        outcome = await invoker.invoke(READ, {"name": "orders"})
        assert outcome.state == OutcomeState.PENDING

    async def test_read_timeout_is_pending(self):
        invoker = LambdaInvoker()
        mock_client = MagicMock()
        mock_client.invoke.side_effect = ReadTimeoutError(endpoint_url="https://x")
        invoker._client = mock_client

        outcome = await invoker.invoke(READ, {"name": "orders"})
        assert outcome.state == OutcomeState.PENDING
        assert "no response" in outcome.note

    async def test_client_error_fails_without_retry(self):
        invoker = LambdaInvoker()
        mock_client = MagicMock()
        mock_client.invoke.side_effect = ClientError(
            {
                "Error": {"Code": "AccessDeniedException", "Message": "denied"},
                "ResponseMetadata": {"HTTPStatusCode": 403},
            },
            "Invoke",
        )
        invoker._client = mock_client

        outcome = await invoker.invoke(READ, {"name": "orders"})

        assert outcome.failed
        assert outcome.status_code == 403
        assert outcome.payload["Code"] == "AccessDeniedException"
        mock_client.invoke.assert_called_once()

    def test_satisfies_invoker_protocol(self):
        assert isinstance(LambdaInvoker(), RemoteInvoker)


@pytest.mark.asyncio
class TestHttpInvoker:
    @respx.mock
    async def test_passthrough_envelope(self):
        route = respx.post(OPERATOR_URL).mock(
            return_value=httpx.Response(
                200, json={"statusCode": 200, "body": json.dumps({"name": "orders"})}
            )
        )
        async with HttpInvoker(HttpInvokerConfig(url=OPERATOR_URL)) as invoker:
            outcome = await invoker.invoke(READ, {"name": "orders"})
        assert route.called
        request = route.calls.last.request
        assert request.url.params["type_query"] == "readTopic"
        assert json.loads(request.content) == {"name": "orders"}
        assert outcome.settled
        assert outcome.payload == {"name": "orders"}

    @respx.mock
    async def test_plain_http_status(self):
        respx.post(OPERATOR_URL).mock(
            return_value=httpx.Response(404, json={"error": "missing"})
        )
        async with HttpInvoker(HttpInvokerConfig(url=OPERATOR_URL)) as invoker:
            outcome = await invoker.invoke(READ, {"name": "orders"})
        assert outcome.not_found
        assert outcome.payload == {"error": "missing"}

    @respx.mock
    async def test_auth_token_sent(self):
        route = respx.post(OPERATOR_URL).mock(
            return_value=httpx.Response(200, json={"statusCode": 200, "body": "{}"})
        )
        config = HttpInvokerConfig(url=OPERATOR_URL, auth_token="s3cret")
        async with HttpInvoker(config) as invoker:
            await invoker.invoke(READ, {"name": "orders"})
        assert route.calls.last.request.headers["Authorization"] == "Bearer s3cret"

    @respx.mock
    async def test_non_json_success_is_pending(self):
        respx.post(OPERATOR_URL).mock(
            return_value=httpx.Response(200, text="<html>gateway</html>")
        )
        async with HttpInvoker(HttpInvokerConfig(url=OPERATOR_URL)) as invoker:
            outcome = await invoker.invoke(READ, {"name": "orders"})
        assert outcome.state == OutcomeState.PENDING

    @respx.mock
    async def test_non_json_error_fails(self):
        respx.post(OPERATOR_URL).mock(
            return_value=httpx.Response(502, text="Bad Gateway")
        )
        async with HttpInvoker(HttpInvokerConfig(url=OPERATOR_URL)) as invoker:
            outcome = await invoker.invoke(READ, {"name": "orders"})
        assert outcome.failed
        assert outcome.payload == "Bad Gateway"

    @respx.mock
    async def test_transport_error_is_pending(self):
        respx.post(OPERATOR_URL).mock(side_effect=httpx.ConnectError("refused"))
        async with HttpInvoker(HttpInvokerConfig(url=OPERATOR_URL)) as invoker:
            outcome = await invoker.invoke(READ, {"name": "orders"})
        assert outcome.state == OutcomeState.PENDING


class TestCreateInvoker:
    def test_lambda_backend(self):
        assert isinstance(create_invoker(ProviderConfig()), LambdaInvoker)

    def test_http_backend(self):
        config = ProviderConfig(
            backend=InvokerBackend.HTTP,
            http=HttpInvokerConfig(url=OPERATOR_URL),
        )
        assert isinstance(create_invoker(config), HttpInvoker)
