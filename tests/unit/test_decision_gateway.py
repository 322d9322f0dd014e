import json
import logging

import httpx
import pytest
from pydantic import ValidationError

from evalcoord.constants import StepStatus
from evalcoord.contracts import DecisionRequest
from evalcoord.errors import (
    DecisionHttpError,
    DecisionNetworkError,
    DecisionTimeoutError,
)
from evalcoord.gateway import DecisionGateway


def _gateway(handler, timeout=30.0):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DecisionGateway("http://decision.test/", timeout=timeout, client=client)


@pytest.mark.asyncio
async def test_evaluate_posts_request_with_correlation_header():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["correlation_id"] = request.headers.get("X-Correlation-ID")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "eligible": True,
                "scheme": "DR15",
                "compensation_amount": 25.5,
                "reasons": ["delay over 15 minutes"],
                "policy_version": "2024-01",
            },
        )

    gateway = _gateway(handler)
    result = await gateway.evaluate(
        DecisionRequest(subject_id="journey-1", category_code="ANYTIME", delay_minutes=20),
        "corr-1",
    )

    assert seen["url"] == "http://decision.test/evaluate"
    assert seen["correlation_id"] == "corr-1"
    assert seen["body"] == {
        "subject_id": "journey-1",
        "category_code": "ANYTIME",
        "delay_minutes": 20,
        "fare_amount": 0,
    }
    assert result.eligible is True
    assert result.scheme == "DR15"
    assert result.compensation_amount == 25.5
    assert result.reasons == ["delay over 15 minutes"]
    # unknown response fields survive into the stored decision
    assert result.model_dump()["policy_version"] == "2024-01"


@pytest.mark.asyncio
async def test_evaluate_fills_defaults_for_missing_fields():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"eligible": False})

    result = await _gateway(handler).evaluate(
        {"subject_id": "journey-1", "category_code": None}, "corr-1"
    )

    assert seen["body"] == {
        "subject_id": "journey-1",
        "category_code": "UNKNOWN",
        "delay_minutes": 0,
        "fare_amount": 0,
    }
    assert result.eligible is False
    assert result.scheme is None
    assert result.compensation_amount == 0
    assert result.reasons == []


@pytest.mark.asyncio
async def test_http_error_is_classified_with_status_and_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "boom"})

    with pytest.raises(DecisionHttpError) as exc_info:
        await _gateway(handler).evaluate(DecisionRequest(subject_id="j"), "corr-1")

    err = exc_info.value
    assert err.status_code == 500
    assert err.step_status == StepStatus.FAILED
    assert err.details() == {
        "message": "HTTP_ERROR_500",
        "status_code": 500,
        "body": {"error": "boom"},
    }


@pytest.mark.asyncio
async def test_http_error_keeps_non_json_body_as_text():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    with pytest.raises(DecisionHttpError) as exc_info:
        await _gateway(handler).evaluate(DecisionRequest(subject_id="j"), "corr-1")

    assert exc_info.value.details()["body"] == "unavailable"


@pytest.mark.asyncio
async def test_timeout_is_classified_with_timeout_ms():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(DecisionTimeoutError) as exc_info:
        await _gateway(handler, timeout=2.5).evaluate(
            DecisionRequest(subject_id="j"), "corr-1"
        )

    err = exc_info.value
    assert err.step_status == StepStatus.TIMEOUT
    assert err.details() == {"message": "TIMEOUT", "timeout_ms": 2500}


@pytest.mark.asyncio
async def test_connection_failure_is_classified_as_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(DecisionNetworkError) as exc_info:
        await _gateway(handler).evaluate(DecisionRequest(subject_id="j"), "corr-1")

    details = exc_info.value.details()
    assert details["message"] == "connection refused"
    assert details["code"] == "ConnectError"
    assert exc_info.value.step_status == StepStatus.FAILED


@pytest.mark.asyncio
async def test_unexpected_errors_are_rethrown_unchanged():
    def handler(request: httpx.Request) -> httpx.Response:
        raise KeyError("unexpected")

    with pytest.raises(KeyError):
        await _gateway(handler).evaluate(DecisionRequest(subject_id="j"), "corr-1")


@pytest.mark.asyncio
async def test_malformed_success_body_is_logged_and_rethrown(caplog):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"unexpected": 1})

    with caplog.at_level(logging.ERROR, logger="evalcoord.gateway"):
        with pytest.raises(ValidationError):
            await _gateway(handler).evaluate(DecisionRequest(subject_id="j"), "corr-1")

    assert "Decision service call failed correlation_id=corr-1" in caplog.text


@pytest.mark.asyncio
async def test_non_json_success_body_is_logged_and_rethrown(caplog):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>ok</html>")

    with caplog.at_level(logging.ERROR, logger="evalcoord.gateway"):
        with pytest.raises(ValueError):
            await _gateway(handler).evaluate(DecisionRequest(subject_id="j"), "corr-1")

    assert "Decision service call failed correlation_id=corr-1" in caplog.text


@pytest.mark.asyncio
async def test_aclose_leaves_injected_client_open():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    gateway = DecisionGateway("http://decision.test", client=client)

    await gateway.aclose()

    assert client.is_closed is False
    await client.aclose()
