"""Outbound delivery transports for notifications.

Both transports speak plain JSON over HTTP: email goes to a transactional
mail API, push goes to a push gateway.  A transport without a configured
URL is disabled and reports every send as not delivered.
"""
import logging

import httpx

log = logging.getLogger(__name__)


class EmailChannel:
    def __init__(
        self,
        api_url: str | None,
        api_key: str | None = None,
        sender: str = "gm@tabletop.local",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout
        self.transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_url)

    async def send(self, to: str, subject: str, html: str, notification_id: str) -> bool:
        if not self.enabled:
            log.debug("Email transport not configured; skipping %s", notification_id)
            return False
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            resp = await client.post(
                self.api_url,
                json={
                    "from": self.sender,
                    "to": to,
                    "subject": subject,
                    "html": html,
                    "tags": {"notification_id": notification_id},
                },
                headers=headers,
            )
            resp.raise_for_status()
        return True


class PushChannel:
    def __init__(
        self,
        gateway_url: str | None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.gateway_url = gateway_url
        self.timeout = timeout
        self.transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.gateway_url)

    async def send(
        self,
        user_id: int,
        title: str,
        message: str,
        action_url: str | None = None,
        data: dict | None = None,
    ) -> bool:
        if not self.enabled:
            return False
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            resp = await client.post(
                self.gateway_url,
                json={
                    "user_id": user_id,
                    "title": title,
                    "message": message,
                    "action_url": action_url,
                    "data": data or {},
                },
            )
            resp.raise_for_status()
        return True
