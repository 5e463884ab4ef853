from __future__ import annotations

from typing import Optional

import httpx
import structlog

from ..errors import ExternalServiceError

logger = structlog.get_logger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"
TELEGRAM_MAX_MESSAGE_LEN = 3900


class TelegramChannel:
    """Sends alerts through the Telegram Bot API.

    Recipients are chat ids; when a job lists none, ``default_chat_id`` is
    used. Long alerts are sent as several messages, split on line breaks
    where possible. The bot token never appears in raised errors or logs.
    """

    def __init__(
        self,
        bot_token: str,
        default_chat_id: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        *,
        max_message_len: int = TELEGRAM_MAX_MESSAGE_LEN,
        timeout_seconds: float = 15.0,
    ):
        if not bot_token:
            raise ValueError("Telegram bot token is required")
        self.bot_token = bot_token
        self.default_chat_id = default_chat_id
        self.max_message_len = max(1, int(max_message_len))
        self.timeout_seconds = timeout_seconds
        self._client = client

    def chunk_message(self, text: str) -> list[str]:
        limit = self.max_message_len
        chunks: list[str] = []
        current = ""
        for line in (text or "").strip().splitlines():
            while len(line) > limit:
                if current:
                    chunks.append(current)
                    current = ""
                chunks.append(line[:limit])
                line = line[limit:]
            candidate = f"{current}\n{line}" if current else line
            if len(candidate) > limit:
                chunks.append(current)
                current = line
            else:
                current = candidate
        if current or not chunks:
            chunks.append(current)
        return chunks

    async def send(self, recipients: list[str], subject: str, body: str) -> None:
        chat_ids = [str(r) for r in recipients if str(r).strip()]
        if not chat_ids and self.default_chat_id:
            chat_ids = [self.default_chat_id]
        if not chat_ids:
            raise ExternalServiceError("No Telegram chat id configured for alert")

        chunks = self.chunk_message(f"{subject}\n\n{body}")
        if self._client is not None:
            await self._send_all(self._client, chat_ids, chunks)
        else:
            async with httpx.AsyncClient() as client:
                await self._send_all(client, chat_ids, chunks)

    async def _send_all(self, client: httpx.AsyncClient, chat_ids: list[str], chunks: list[str]) -> None:
        failed: list[str] = []
        for chat_id in chat_ids:
            message_id = None
            try:
                for chunk in chunks:
                    message_id = await self._deliver(client, chat_id, chunk)
            except ExternalServiceError as exc:
                logger.warning("Telegram alert failed", chat_id=chat_id, error=str(exc))
                failed.append(chat_id)
                continue
            logger.info("Telegram alert sent", chat_id=chat_id, parts=len(chunks), message_id=message_id)
        if failed:
            raise ExternalServiceError(f"Telegram delivery failed for chat ids: {', '.join(failed)}")

    async def _deliver(self, client: httpx.AsyncClient, chat_id: str, text: str) -> Optional[int]:
        """Post one message and return its message id."""
        url = f"{TELEGRAM_API_URL}/bot{self.bot_token}/sendMessage"
        try:
            resp = await client.post(url, json={"chat_id": chat_id, "text": text}, timeout=self.timeout_seconds)
            data = resp.json()
        except (httpx.RequestError, ValueError) as exc:
            raise ExternalServiceError(self._redact(f"{type(exc).__name__}: {exc}")) from None

        if not isinstance(data, dict):
            raise ExternalServiceError(f"Unexpected Telegram response (HTTP {resp.status_code})")
        if not data.get("ok"):
            description = data.get("description") or "no description"
            raise ExternalServiceError(self._redact(f"Telegram API error {resp.status_code}: {description}"))
        result = data.get("result")
        return result.get("message_id") if isinstance(result, dict) else None

    def _redact(self, message: str) -> str:
        return message.replace(self.bot_token, "<redacted>")
