import logging
from typing import Any, Dict, Optional

import httpx

from services.config import (
    ConfigurationError,
    WATI_ACCESS_TOKEN,
    WATI_BASE_URL,
    WATI_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)


class WatiClientError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None, response: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class WatiClient:
    """Thin WATI sendTemplateMessages client"""

    def __init__(
        self,
        access_token: Optional[str] = None,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.access_token = access_token if access_token is not None else WATI_ACCESS_TOKEN
        self.base_url = (base_url if base_url is not None else WATI_BASE_URL).rstrip("/")
        if not self.access_token or not self.base_url:
            raise ConfigurationError("WATI_ACCESS_TOKEN and WATI_BASE_URL are required")
        self.client = http_client or httpx.AsyncClient(timeout=WATI_TIMEOUT_SECONDS)

    async def send_template(self, payload: Dict[str, Any]) -> Any:
        token = self.access_token
        if not token.lower().startswith("bearer "):
            token = f"Bearer {token}"
        headers = {"Authorization": token, "Content-Type": "application/json"}
        endpoint = f"{self.base_url}/api/v1/sendTemplateMessages"

        logger.info(f"[WATI] Request: {endpoint} template={payload.get('template_name')}")
        try:
            resp = await self.client.post(endpoint, headers=headers, json=payload)
        except httpx.HTTPError as e:
            raise WatiClientError(f"WATI request failed: {e}") from e

        logger.info(f"[WATI] Response: {resp.status_code}")
        try:
            body = resp.json()
        except ValueError:
            body = resp.text

        if resp.status_code >= 400:
            raise WatiClientError(f"WATI returned HTTP {resp.status_code}", resp.status_code, body)
        if isinstance(body, dict) and body.get("result") is False:
            raise WatiClientError(f"WATI rejected the message: {body.get('info') or body}", resp.status_code, body)
        return body
