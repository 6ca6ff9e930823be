import json
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from webhook_scheduler.config import settings
from webhook_scheduler.connectors.base import (
    BaseDeliveryConnector,
    DeliveryAttachment,
    DeliveryResult,
    DeliveryStatus,
)
from webhook_scheduler.utils.encrypt import mask_webhook_url
from webhook_scheduler.utils.log_config import TRACE

log = logging.getLogger(__name__)

MAX_ERROR_BODY_CHARS = 500

# Discord answers 200 with the created message instead of an early 204
WAIT_PARAMS = {"wait": "true"}


def is_allowed_webhook_url(url: str, prefixes: Optional[List[str]] = None) -> bool:
    """True if url starts with one of the configured webhook prefixes."""
    if not isinstance(url, str):
        return False
    url = url.strip()
    allowed = prefixes if prefixes is not None else settings.webhook_url_prefixes_list
    return any(url.startswith(prefix) and len(url) > len(prefix) for prefix in allowed)


def _describe_error(response: httpx.Response) -> str:
    """Extract Discord's '{message, code, errors}' body, falling back to raw text."""
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("message"):
        message = str(data["message"])
        if data.get("errors"):
            message = f"{message}: {json.dumps(data['errors'])}"
        if data.get("code") is not None:
            message = f"{message} (code {data['code']})"
        return message[:MAX_ERROR_BODY_CHARS]
    text = response.text.strip()
    return (text or response.reason_phrase or "Something went wrong.")[:MAX_ERROR_BODY_CHARS]


class DiscordWebhookConnector(BaseDeliveryConnector):
    """
    Delivery client for Discord-compatible webhook endpoints.

    - JSON body when there are no attachments
    - multipart 'payload_json' + 'files[n]' when there are
    - bounded timeout on every request, no redirects
    """

    def __init__(self, timeout: Optional[float] = None, client: Optional[httpx.AsyncClient] = None):
        self.timeout = timeout if timeout is not None else settings.delivery_timeout_seconds
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            follow_redirects=False,
        )
        log.debug(f"Webhook connector initialized with timeout={self.timeout}s")

    async def deliver(
        self,
        url: str,
        payload: Dict[str, Any],
        attachments: Optional[List[DeliveryAttachment]] = None,
    ) -> DeliveryResult:
        masked = mask_webhook_url(url)
        started = time.monotonic()
        try:
            if attachments:
                files = [
                    (f"files[{index}]", (attachment.filename, attachment.content, attachment.content_type))
                    for index, attachment in enumerate(attachments)
                ]
                log.log(TRACE, f"Webhook POST {masked} (multipart, {len(files)} file(s))")
                response = await self.client.post(
                    url,
                    data={"payload_json": json.dumps(payload)},
                    files=files,
                    params=WAIT_PARAMS,
                    timeout=self.timeout,
                )
            else:
                log.log(TRACE, f"Webhook POST {masked} payload keys={sorted(payload)}")
                response = await self.client.post(url, json=payload, params=WAIT_PARAMS, timeout=self.timeout)
        except httpx.TimeoutException as e:
            log.warning(f"Webhook request to {masked} timed out after {self.timeout}s: {e!r}")
            return DeliveryResult(
                status=DeliveryStatus.TRANSIENT,
                error=f"Timed out after {self.timeout}s",
                elapsed_ms=self._elapsed_ms(started),
            )
        except httpx.RequestError as e:
            log.warning(f"Webhook request error for {masked}: {e!r}")
            return DeliveryResult(
                status=DeliveryStatus.TRANSIENT,
                error=f"Request error: {e.__class__.__name__}: {e}",
                elapsed_ms=self._elapsed_ms(started),
            )

        elapsed_ms = self._elapsed_ms(started)
        status_code = response.status_code
        log.log(TRACE, f"Webhook response from {masked}: {status_code} in {elapsed_ms}ms")

        if 200 <= status_code < 300:
            return DeliveryResult(status=DeliveryStatus.SUCCESS, status_code=status_code, elapsed_ms=elapsed_ms)

        error = _describe_error(response)
        if status_code >= 500:
            log.warning(f"Webhook target {masked} failed with HTTP {status_code}: {error}")
            status = DeliveryStatus.TRANSIENT
        else:
            # 4xx and unexpected 1xx/3xx: the request itself is wrong
            log.error(f"Webhook target {masked} rejected the message with HTTP {status_code}: {error}")
            status = DeliveryStatus.REJECTED
        return DeliveryResult(status=status, status_code=status_code, error=error, elapsed_ms=elapsed_ms)

    async def aclose(self) -> None:
        await self.client.aclose()

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return max(0, int((time.monotonic() - started) * 1000))
