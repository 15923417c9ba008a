import asyncio
import json

import httpx
import pytest
from fakes import FakeClock, SleepRecorder

from visual_planner.errors import (
    ChatRequestError,
    OperationCancelled,
    RateLimitedError,
    RetriesExhaustedError,
    TransientNetworkError,
)
from visual_planner.llm.gateway import ChatGateway, is_rate_limited
from visual_planner.llm.router import ModelRouter
from visual_planner.llm.selector import ModelSelector
from visual_planner.models import ClassifiedItem
from visual_planner.nodes import context_aware, keywords


def completion(content, tokens=17):
    return httpx.Response(200, json={
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"total_tokens": tokens},
    })


def scripted(*responses):
    """Handler replaying ``responses`` in order and recording request bodies."""
    queue = list(responses)
    requests = []

    def handler(request: httpx.Request):
        requests.append(json.loads(request.content))
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    return handler, requests


def make_gateway(handler, *, router=None, models=("model-a", "model-b")):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://llm.test")
    selector = ModelSelector(list(models), [], "default-model")
    sleep = SleepRecorder()
    return ChatGateway(client, selector, router=router, sleep=sleep), sleep


def send(gateway, **kwargs):
    return asyncio.run(gateway.send_chat("system text", "user text", **kwargs))


def test_success_returns_content_and_tokens():
    handler, requests = scripted(completion("hello world", tokens=99))
    gateway, sleep = make_gateway(handler)

    result = send(gateway, temperature=0.4, max_tokens=2000)

    assert result.content == "hello world"
    assert result.tokens_used == 99
    assert result.model == "model-a"
    assert requests == [{
        "model": "model-a",
        "messages": [
            {"role": "system", "content": "system text"},
            {"role": "user", "content": "user text"},
        ],
        "temperature": 0.4,
        "max_tokens": 2000,
    }]
    assert sleep.delays == []


def test_rate_limit_backs_off_exponentially_and_rotates_model():
    handler, requests = scripted(
        httpx.Response(429, text="slow down"),
        httpx.Response(503, text="overloaded"),
        completion("finally"),
    )
    router = ModelRouter(["model-a", "model-b"], [], "default-model", clock=FakeClock())
    gateway, sleep = make_gateway(handler, router=router)

    result = send(gateway)

    assert result.content == "finally"
    assert sleep.delays == [2, 4]
    assert [r["model"] for r in requests] == ["model-a", "model-b", "model-a"]
    assert router.is_on_cooldown("model-a")
    assert router.is_on_cooldown("model-b")


def test_quota_marker_in_body_is_retryable():
    handler, requests = scripted(
        httpx.Response(403, text='{"error": "Quota Exceeded for this project"}'),
        completion("ok"),
    )
    gateway, sleep = make_gateway(handler)

    assert send(gateway).content == "ok"
    assert sleep.delays == [2]
    assert len(requests) == 2


def test_other_client_errors_raise_immediately():
    handler, requests = scripted(httpx.Response(400, text="bad request"))
    gateway, sleep = make_gateway(handler)

    with pytest.raises(ChatRequestError) as exc_info:
        send(gateway)

    assert exc_info.value.status_code == 400
    assert len(requests) == 1
    assert sleep.delays == []


def test_empty_content_waits_one_second_and_retries():
    handler, _ = scripted(completion("   "), completion("content"))
    gateway, sleep = make_gateway(handler)

    assert send(gateway).content == "content"
    assert sleep.delays == [1]


def test_non_json_envelope_is_treated_as_empty():
    handler, _ = scripted(httpx.Response(200, text="<html>gateway</html>"), completion("content"))
    gateway, sleep = make_gateway(handler)

    assert send(gateway).content == "content"
    assert sleep.delays == [1]


def test_network_errors_use_linear_backoff_then_exhaust():
    handler, requests = scripted(
        httpx.ConnectError("connection refused"),
        httpx.ReadTimeout("timed out"),
        httpx.ConnectError("connection refused"),
    )
    gateway, sleep = make_gateway(handler)

    with pytest.raises(RetriesExhaustedError) as exc_info:
        send(gateway)

    assert sleep.delays == [1, 2]
    assert len(requests) == 3
    assert exc_info.value.model == "model-a"
    assert "model-a" in str(exc_info.value)
    assert isinstance(exc_info.value.__cause__, TransientNetworkError)


def test_exhausted_rate_limits_name_last_model():
    handler, _ = scripted(*(httpx.Response(429) for _ in range(3)))
    gateway, sleep = make_gateway(handler)

    with pytest.raises(RetriesExhaustedError) as exc_info:
        send(gateway)

    assert sleep.delays == [2, 4]
    assert exc_info.value.attempts == 3
    assert isinstance(exc_info.value.__cause__, RateLimitedError)


def test_cancel_signal_stops_before_request():
    handler, requests = scripted(completion("never"))
    gateway, _ = make_gateway(handler)
    cancel = asyncio.Event()
    cancel.set()

    with pytest.raises(OperationCancelled):
        send(gateway, cancel=cancel)
    assert requests == []


def test_generate_content_returns_none_on_failure():
    handler, _ = scripted(httpx.Response(401, text="unauthorized"))
    gateway, _ = make_gateway(handler)

    assert asyncio.run(gateway.generate_content("s", "u")) is None


def test_is_rate_limited():
    assert is_rate_limited(429, "")
    assert is_rate_limited(500, "")
    assert is_rate_limited(502, "")
    assert is_rate_limited(403, "QUOTA exhausted")
    assert not is_rate_limited(400, "bad request")
    assert not is_rate_limited(404, "")


@pytest.mark.parametrize("envelope", [
    {"choices": [{"message": "hello"}]},
    {"choices": [{"message": {"content": ["x"]}}]},
    {"choices": "hello"},
    {"message": ["x"]},
])
def test_malformed_envelopes_are_treated_as_empty(envelope):
    handler, _ = scripted(httpx.Response(200, json=envelope), completion("content"))
    gateway, sleep = make_gateway(handler)

    assert send(gateway).content == "content"
    assert sleep.delays == [1]


def test_unreadable_token_count_reads_as_zero():
    handler, _ = scripted(httpx.Response(200, json={
        "choices": [{"message": {"content": "hello"}}],
        "usage": {"total_tokens": "many"},
    }))
    gateway, _ = make_gateway(handler)

    result = send(gateway)
    assert (result.content, result.tokens_used) == ("hello", 0)


def test_malformed_envelopes_leave_context_and_keywords_degraded():
    handler, _ = scripted(*[httpx.Response(200, json={"message": ["x"]}) for _ in range(6)])
    gateway, _ = make_gateway(handler)
    items = [ClassifiedItem(index=0, timestamp="00:00", text="a line")]

    assert asyncio.run(context_aware.extract_global_context(items, "T", gateway=gateway)) is None
    result = asyncio.run(keywords.extract_keywords("a line", gateway=gateway))
    assert not result.success
    assert "after 3 attempts" in result.error
