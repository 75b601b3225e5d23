# proofdesk/telegram_client.py
"""
Minimal Telegram Bot API client (only the two calls the review workflow needs).

Env vars:
- BOT_TOKEN
- TELEGRAM_API_BASE (default: https://api.telegram.org)
- TELEGRAM_TIMEOUT_SECONDS (default: 15)

No retries: a single failed call raises UpstreamError and the caller decides.
"""
import os
from typing import Any, Dict, Optional

import httpx

from proofdesk import monitoring
from proofdesk.errors import UpstreamError

BOT_TOKEN = os.getenv("BOT_TOKEN", "").strip()
TELEGRAM_API_BASE = os.getenv("TELEGRAM_API_BASE", "https://api.telegram.org").rstrip("/")
TELEGRAM_TIMEOUT_SECONDS = float(os.getenv("TELEGRAM_TIMEOUT_SECONDS", "15"))


class TelegramBotClient:
    def __init__(self, token: str = BOT_TOKEN, api_base: str = TELEGRAM_API_BASE,
                 timeout: float = TELEGRAM_TIMEOUT_SECONDS,
                 transport: Optional[httpx.BaseTransport] = None):
        self.token = token
        self.api_base = api_base
        self.timeout = timeout
        self._transport = transport

    def _call(self, method: str, payload: Dict[str, Any]) -> Any:
        if not self.token:
            monitoring.inc_upstream_call(method, "not_configured")
            raise UpstreamError("BOT_TOKEN is not configured", {"method": method})

        url = f"{self.api_base}/bot{self.token}/{method}"
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                r = client.post(url, json=payload)
            body = r.json()
        except (httpx.HTTPError, ValueError) as e:
            monitoring.inc_upstream_call(method, "error")
            monitoring.logger.error("Bot API %s failed: %s", method, e)
            raise UpstreamError(f"Bot API {method} failed", {"method": method}) from e

        if r.status_code >= 400 or not isinstance(body, dict) or not body.get("ok"):
            description = body.get("description") if isinstance(body, dict) else None
            monitoring.inc_upstream_call(method, "rejected")
            monitoring.logger.error(
                "Bot API %s rejected", method,
                extra={"http_status": r.status_code, "description": description},
            )
            raise UpstreamError(
                f"Bot API {method} rejected: {description or r.status_code}",
                {"method": method, "http_status": r.status_code},
            )

        monitoring.inc_upstream_call(method, "ok")
        return body.get("result")

    def create_invite_link(self, channel_id: str, member_limit: int, expire_at: int) -> str:
        """createChatInviteLink; returns the invite_link URL."""
        result = self._call("createChatInviteLink", {
            "chat_id": channel_id,
            "member_limit": member_limit,
            "expire_date": expire_at,
        })
        link = (result or {}).get("invite_link")
        if not link:
            raise UpstreamError("Bot API returned no invite_link", {"chat_id": channel_id})
        return link

    def send_message(self, user_id: str, text: str, parse_mode: Optional[str] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"chat_id": user_id, "text": text}
        if parse_mode:
            payload["parse_mode"] = parse_mode
        return self._call("sendMessage", payload)
