import json

import httpx
import pytest

from webhook_scheduler.connectors.base import DeliveryAttachment, DeliveryStatus
from webhook_scheduler.connectors.discord_connector import DiscordWebhookConnector, is_allowed_webhook_url
from webhook_scheduler.utils.encrypt import decrypt_data, encrypt_data, mask_webhook_url

URL = "https://discord.com/api/webhooks/123/token"


def make_connector(handler) -> DiscordWebhookConnector:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DiscordWebhookConnector(timeout=2.0, client=client)


@pytest.mark.asyncio
async def test_json_delivery_success():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["content_type"] = request.headers["content-type"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(204)

    connector = make_connector(handler)
    result = await connector.deliver(URL, {"content": "hello"})
    await connector.aclose()

    assert result.status == DeliveryStatus.SUCCESS
    assert result.success
    assert result.status_code == 204
    assert seen == {"method": "POST", "content_type": "application/json", "body": {"content": "hello"}}


@pytest.mark.asyncio
async def test_attachments_are_sent_as_multipart():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["content_type"] = request.headers["content-type"]
        seen["body"] = request.read()
        return httpx.Response(200, json={"id": "1"})

    connector = make_connector(handler)
    result = await connector.deliver(
        URL,
        {"content": "with files"},
        [
            DeliveryAttachment(filename="a.txt", content=b"alpha", content_type="text/plain"),
            DeliveryAttachment(filename="b.png", content=b"\x89PNG", content_type="image/png"),
        ],
    )

    assert result.success
    assert seen["content_type"].startswith("multipart/form-data")
    body = seen["body"]
    assert b'name="payload_json"' in body
    assert b'{"content": "with files"}' in body
    assert b'name="files[0]"; filename="a.txt"' in body
    assert b'name="files[1]"; filename="b.png"' in body
    assert b"alpha" in body


@pytest.mark.asyncio
async def test_client_error_is_rejected_with_discord_message():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"message": "Invalid Form Body", "code": 50035, "errors": {"content": {}}})

    result = await make_connector(handler).deliver(URL, {"content": "x"})

    assert result.status == DeliveryStatus.REJECTED
    assert not result.success
    assert result.status_code == 400
    assert "Invalid Form Body" in result.error
    assert "50035" in result.error


@pytest.mark.asyncio
async def test_unknown_webhook_is_rejected():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="Not Found")

    result = await make_connector(handler).deliver(URL, {"content": "x"})
    assert result.status == DeliveryStatus.REJECTED
    assert result.error == "Not Found"


@pytest.mark.asyncio
async def test_server_error_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="")

    result = await make_connector(handler).deliver(URL, {"content": "x"})
    assert result.status == DeliveryStatus.TRANSIENT
    assert not result.success
    assert result.status_code == 503


@pytest.mark.asyncio
async def test_timeout_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    result = await make_connector(handler).deliver(URL, {"content": "x"})
    assert result.status == DeliveryStatus.TRANSIENT
    assert result.status_code is None
    assert "Timed out" in result.error


@pytest.mark.asyncio
async def test_network_error_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    result = await make_connector(handler).deliver(URL, {"content": "x"})
    assert result.status == DeliveryStatus.TRANSIENT
    assert "ConnectError" in result.error


@pytest.mark.asyncio
async def test_redirect_is_not_followed():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(302, headers={"Location": "https://elsewhere.example/"})

    result = await make_connector(handler).deliver(URL, {"content": "x"})
    assert result.status == DeliveryStatus.REJECTED
    assert result.status_code == 302


@pytest.mark.parametrize("url,allowed", [
    ("https://discord.com/api/webhooks/123/token", True),
    ("https://discordapp.com/api/webhooks/123/token", True),
    ("  https://discord.com/api/webhooks/1/t  ", True),
    ("https://discord.com/api/webhooks/", False),
    ("http://discord.com/api/webhooks/123/token", False),
    ("https://evil.example/api/webhooks/123/token", False),
    ("https://discord.com.evil.example/api/webhooks/1/t", False),
    ("", False),
    (None, False),
])
def test_is_allowed_webhook_url(url, allowed):
    assert is_allowed_webhook_url(url) is allowed


def test_custom_prefix_list():
    assert is_allowed_webhook_url("https://hooks.example/x", prefixes=["https://hooks.example/"])
    assert not is_allowed_webhook_url(URL, prefixes=["https://hooks.example/"])


def test_webhook_url_round_trips_through_encryption():
    encrypted = encrypt_data(URL)
    assert encrypted != URL
    assert decrypt_data(encrypted) == URL


def test_mask_webhook_url_hides_token():
    assert mask_webhook_url(URL) == "https://discord.com/api/webhooks/123/********"
    assert mask_webhook_url(None) is None


@pytest.mark.asyncio
async def test_delivery_waits_for_message_confirmation():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url)
        return httpx.Response(200, json={"id": "1"})

    connector = make_connector(handler)
    await connector.deliver(URL + "?thread_id=42", {"content": "json"})
    await connector.deliver(URL, {"content": "multipart"}, [DeliveryAttachment(filename="a.txt", content=b"a")])

    assert seen[0].params["wait"] == "true"
    assert seen[0].params["thread_id"] == "42"
    assert seen[1].params["wait"] == "true"
