"""Telegram alert sink and flow event bridges."""

import html

import httpx
import structlog

from ..core.interfaces import AlertSink, FlowEvents
from ..core.types import FlowEvent

logger = structlog.get_logger(__name__)

EXPLORER_TX_URL = "https://basescan.org/tx/"


class TelegramAlertSink(AlertSink):
    """Telegram-based alert sink implementation."""

    def __init__(
        self,
        bot_token: str,
        admin_user_ids: list[int],
        session: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize Telegram alert sink.

        Args:
            bot_token: Telegram bot token
            admin_user_ids: List of admin user IDs to send alerts to
            session: Optional HTTP session for requests
        """
        self.bot_token = bot_token
        self.admin_user_ids = admin_user_ids
        self.session = session or httpx.AsyncClient()
        self.base_url = f"https://api.telegram.org/bot{bot_token}"

        logger.info("Telegram alert sink initialized", admin_count=len(admin_user_ids))

    async def push(self, message: str) -> None:
        """Push alert message to all admin users.

        A failed delivery to one admin is logged and does not stop the rest.

        Args:
            message: Alert message to send
        """
        if not self.admin_user_ids:
            logger.warning("No admin users configured, skipping alert")
            return

        success_count = 0
        for user_id in self.admin_user_ids:
            try:
                await self._send_message(user_id, message)
                success_count += 1
            except (httpx.HTTPError, RuntimeError) as e:
                logger.error(
                    "Failed to send alert to admin", user_id=user_id, error=str(e)
                )

        logger.info(
            "Alert push completed",
            total_admins=len(self.admin_user_ids),
            success_count=success_count,
        )

    async def _send_message(self, chat_id: int, text: str) -> None:
        url = f"{self.base_url}/sendMessage"
        data = {"chat_id": chat_id, "text": text, "parse_mode": "HTML"}

        response = await self.session.post(url, json=data)
        response.raise_for_status()

        result = response.json()
        if not result.get("ok"):
            raise RuntimeError(
                f"Telegram API error: {result.get('description', 'Unknown error')}"
            )

    async def close(self) -> None:
        """Close the alert sink and cleanup resources."""
        await self.session.aclose()
        logger.info("Telegram alert sink closed")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


def format_flow_event(event: FlowEvent) -> str:
    """Render a flow event as an HTML alert message."""
    icon = {"success": "🟢", "error": "🔴"}.get(event.level, "ℹ️")
    lines = [
        f"{icon} <b>{html.escape(event.title)}</b>",
        f"Flow: {event.flow} ({event.state})",
    ]
    if event.pool_address:
        lines.append(f"Pool: <code>{event.pool_address}</code>")
    if event.message:
        lines.append(html.escape(event.message))
    if event.tx_hash:
        lines.append(f'<a href="{EXPLORER_TX_URL}{event.tx_hash}">View transaction</a>')
    return "\n".join(lines)


class AlertFlowEvents(FlowEvents):
    """Forward success and error flow events to an alert sink."""

    def __init__(self, sink: AlertSink, levels: tuple[str, ...] = ("success", "error")):
        self.sink = sink
        self.levels = levels

    async def emit(self, event: FlowEvent) -> None:
        if event.level not in self.levels:
            return
        await self.sink.push(format_flow_event(event))


class FanoutFlowEvents(FlowEvents):
    """Deliver each flow event to several sinks.

    A failing sink is logged and skipped so notifications never abort a flow.
    """

    def __init__(self, sinks: list[FlowEvents]) -> None:
        self.sinks = sinks

    async def emit(self, event: FlowEvent) -> None:
        for sink in self.sinks:
            try:
                await sink.emit(event)
            except Exception as e:
                logger.error(
                    "Flow event delivery failed",
                    sink=type(sink).__name__,
                    flow=event.flow,
                    error=str(e),
                )
