from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

log = logging.getLogger(__name__)

DEFAULT_REGISTRATION_URL = "https://api.prod.whoop.com/developer/v1/webhook"


class RegistrationError(Exception):
    """Provider refused (or never answered) a webhook registration.

    ``status_code`` is None when the request did not get a response at all.
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


@dataclass(frozen=True)
class RegistrationReceipt:
    callback_url: str
    status_code: int
    webhook: Dict[str, Any] = field(default_factory=dict)


class WebhookRegistrar:
    """Single-attempt client for the provider's webhook-registration endpoint. No retries."""

    def __init__(
        self,
        registration_url: str = DEFAULT_REGISTRATION_URL,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.registration_url = registration_url
        self.timeout = timeout
        self._transport = transport

    async def register(self, access_token: str, callback_url: str) -> RegistrationReceipt:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }
        payload = {"url": callback_url, "enabled": True}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.registration_url, json=payload, headers=headers)
        except httpx.RequestError as exc:
            log.warning("Webhook registration request failed url=%s: %s", self.registration_url, exc)
            raise RegistrationError(f"Webhook registration failed: {exc}", body=str(exc)) from exc

        if resp.status_code < 200 or resp.status_code >= 300:
            body = (resp.text or "")[:2000]
            log.warning(
                "Webhook registration rejected status=%s body_len=%s",
                resp.status_code,
                len(resp.text or ""),
            )
            raise RegistrationError(
                f"Webhook registration failed: {resp.status_code} {resp.reason_phrase}",
                status_code=resp.status_code,
                body=body,
            )

        try:
            data = resp.json() if resp.content else {}
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {"result": data}
        log.info("Webhook registered callback_url=%s status=%s", callback_url, resp.status_code)
        return RegistrationReceipt(callback_url=callback_url, status_code=resp.status_code, webhook=data)
