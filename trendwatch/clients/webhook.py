"""Webhook delivery for trend alerts."""

from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from trendwatch import __version__
from trendwatch.config import settings
from trendwatch.errors import DeliveryError

USER_AGENT = f"trendwatch/{__version__}"


class WebhookSender:
    """POSTs JSON notifications to user-configured webhook URLs."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.timeout = timeout if timeout is not None else settings.webhook_timeout
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))

    async def send(self, url: str, payload: dict[str, Any]) -> None:
        """Deliver ``payload`` to ``url``.

        Raises:
            DeliveryError: On connection failure, timeout or a non-2xx response.
        """
        body = {
            **payload,
            "source": "trendwatch",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            resp = await self.client.post(
                url,
                json=body,
                headers={"User-Agent": USER_AGENT},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            raise DeliveryError(f"webhook request to {url} failed: {exc}") from exc
        if not resp.is_success:
            raise DeliveryError(f"webhook failed with status {resp.status_code}")

    async def close(self) -> None:
        await self.client.aclose()
