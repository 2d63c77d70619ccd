import base64

import pytest
import requests

from config import Settings
from conftest import FakeRaster
from errors import ApiError
from vision_client import VisionClient, build_prompt, encode_image


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=""):
        self.status_code = status_code
        self.body = body
        self.text = text

    def json(self):
        if self.body is None:
            raise ValueError("No JSON object could be decoded")
        return self.body


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if self.error:
            raise self.error
        return self.response


def ok_body(content='{"pagewise_line_items": []}', usage=None):
    body = {"choices": [{"message": {"role": "assistant", "content": content}}]}
    if usage is not None:
        body["usage"] = usage
    return body


@pytest.fixture
def session():
    return FakeSession(FakeResponse(body=ok_body(usage={"prompt_tokens": 1200, "completion_tokens": 300})))


def test_build_prompt_states_page_range():
    prompt = build_prompt(4, 6, 9)
    assert "pages 4-6 (of 9 total)" in prompt
    assert "NO SKIPPING" in prompt
    assert "Return ONLY valid JSON" in prompt


def test_encode_image_is_png_data_url():
    url = encode_image(FakeRaster(1))
    assert url.startswith("data:image/png;base64,")
    assert base64.b64decode(url.split(",", 1)[1]) == b"\x89PNG fake"


def test_request_shape(settings, session):
    reply = VisionClient(settings, session).complete("read this", [FakeRaster(1), FakeRaster(2)])

    call = session.calls[0]
    assert call["url"] == settings.openai_api_url
    assert call["headers"] == {"Authorization": "Bearer test-key"}
    assert call["timeout"] == 60.0
    payload = call["json"]
    assert payload["model"] == "gpt-4.1"
    assert payload["max_tokens"] == 6000
    assert payload["temperature"] == 0.1
    content = payload["messages"][0]["content"]
    assert payload["messages"][0]["role"] == "user"
    assert content[0] == {"type": "text", "text": "read this"}
    assert [part["type"] for part in content[1:]] == ["image_url", "image_url"]
    assert content[1]["image_url"]["detail"] == "high"

    assert reply.content == '{"pagewise_line_items": []}'
    assert (reply.input_tokens, reply.output_tokens) == (1200, 300)
    assert reply.usage.total_tokens == 1500


@pytest.mark.parametrize("usage", [None, {}, {"prompt_tokens": "12", "completion_tokens": True}, "n/a"])
def test_missing_or_bad_usage_counts_as_zero(settings, usage):
    body = ok_body()
    if usage is not None:
        body["usage"] = usage
    reply = VisionClient(settings, FakeSession(FakeResponse(body=body))).complete("p", [])
    assert (reply.input_tokens, reply.output_tokens) == (0, 0)


def test_http_error_is_api_error(settings):
    session = FakeSession(FakeResponse(status_code=429, body={}, text="rate limited"))
    with pytest.raises(ApiError) as info:
        VisionClient(settings, session).complete("p", [])
    assert info.value.status_code == 429
    assert "rate limited" in str(info.value)


def test_transport_error_is_api_error(settings):
    session = FakeSession(error=requests.ConnectionError("no route"))
    with pytest.raises(ApiError) as info:
        VisionClient(settings, session).complete("p", [])
    assert isinstance(info.value.__cause__, requests.ConnectionError)


@pytest.mark.parametrize("body", [
    None,
    {},
    {"choices": []},
    {"choices": [{"message": {}}]},
    {"choices": [{"message": {"content": None}}]},
    ["not", "a", "dict"],
])
def test_unexpected_body_is_api_error(settings, body):
    with pytest.raises(ApiError):
        VisionClient(settings, FakeSession(FakeResponse(body=body))).complete("p", [])


def test_missing_api_key_is_api_error(session):
    with pytest.raises(ApiError):
        VisionClient(Settings(openai_api_key=None), session).complete("p", [])
    assert session.calls == []


class ClosingSession(FakeSession):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.closed = False

    def close(self):
        self.closed = True


def test_owned_session_is_closed(settings, monkeypatch):
    created = []

    def make_session():
        session = ClosingSession(FakeResponse(body=ok_body()))
        created.append(session)
        return session

    monkeypatch.setattr(requests, "Session", make_session)

    with VisionClient(settings) as client:
        client.complete("p", [])
    assert created[0].closed


def test_injected_session_is_left_open(settings):
    session = ClosingSession(FakeResponse(body=ok_body()))
    with VisionClient(settings, session) as client:
        client.complete("p", [])
    assert not session.closed
