from __future__ import annotations

import json

import httpx
import pytest

from app.schemas import PushMessage, PushNotification
from push.sender import (
    HttpPushSender,
    MockPushSender,
    PushDeliveryError,
    build_default_sender,
)
from settings import get_settings


def _message() -> PushMessage:
    return PushMessage(
        token="token-1",
        notification=PushNotification(title="Alert", body="Tent: too hot"),
        data={"deviceId": "AA", "alarmType": "temperature"},
    )


def _http_sender(handler) -> HttpPushSender:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpPushSender(endpoint_url="https://push.example/send", client=client)


def test_mock_sender_records_and_fails_once() -> None:
    sender = MockPushSender()
    sender.fail_next("boom")

    with pytest.raises(PushDeliveryError, match="boom"):
        sender.send("token-1", _message())
    delivery_id = sender.send("token-1", _message())

    assert delivery_id
    assert [token for token, _ in sender.sent] == ["token-1"]


def test_http_sender_posts_message_and_returns_name() -> None:
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"name": "projects/p/messages/42"})

    delivery_id = _http_sender(handler).send("token-1", _message())

    assert delivery_id == "projects/p/messages/42"
    assert captured["url"] == "https://push.example/send"
    body = captured["body"]["message"]
    assert body["token"] == "token-1"
    assert body["notification"]["title"] == "Alert"
    assert body["android"]["notification"]["channelId"] == "alarm_channel"


def test_http_sender_maps_error_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="token not registered")

    with pytest.raises(PushDeliveryError, match="404"):
        _http_sender(handler).send("token-1", _message())


def test_http_sender_requires_delivery_id() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={})

    with pytest.raises(PushDeliveryError):
        _http_sender(handler).send("token-1", _message())


def test_http_sender_maps_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(PushDeliveryError, match="refused"):
        _http_sender(handler).send("token-1", _message())


def test_default_sender_follows_backend_setting(monkeypatch) -> None:
    monkeypatch.setenv("PUSH_BACKEND", "http")
    monkeypatch.setenv("PUSH_ENDPOINT_URL", "https://push.example/send")
    get_settings.cache_clear()
    build_default_sender.cache_clear()
    try:
        sender = build_default_sender()
        assert isinstance(sender, HttpPushSender)
        assert sender.endpoint_url == "https://push.example/send"
        sender.close()
    finally:
        build_default_sender.cache_clear()
        get_settings.cache_clear()


def test_default_sender_rejects_http_without_endpoint(monkeypatch) -> None:
    monkeypatch.setenv("PUSH_BACKEND", "http")
    monkeypatch.delenv("PUSH_ENDPOINT_URL", raising=False)
    get_settings.cache_clear()
    build_default_sender.cache_clear()
    try:
        with pytest.raises(ValueError):
            build_default_sender()
    finally:
        build_default_sender.cache_clear()
        get_settings.cache_clear()


def test_http_sender_maps_invalid_url() -> None:
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    sender = HttpPushSender(endpoint_url="http://exa mple.com:bad/x", client=client)

    with pytest.raises(PushDeliveryError):
        sender.send("token-1", _message())
