"""
Telegram notifier for run summaries.
"""
import html
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from clients.base import ResilientClient
from core.exceptions import NotificationError
from core.logger import setup_logger
from core.schema import ProcessedTransaction

logger = setup_logger(__name__)

MAX_APPROVED_LINES = 5
MAX_PENDING_LINES = 3


def format_summary(
    stats: Dict[str, int],
    details: Sequence[ProcessedTransaction],
    date: Optional[str] = None,
) -> str:
    """
    Render the daily run summary as Telegram HTML.

    Args:
        stats: processed/approved/pending/errors counters
        details: Per-transaction results of the run
        date: Run date (YYYY-MM-DD), defaults to today

    Returns:
        Message text
    """
    run_date = date or datetime.now(timezone.utc).date().isoformat()

    lines = [f"📊 <b>Daily Categorization Summary</b> - {html.escape(run_date)}", ""]
    lines.append("<b>Statistics:</b>")
    lines.append(f"• Processed: {stats.get('processed', 0)} transactions")
    lines.append(f"• Auto-approved: {stats.get('approved', 0)} ✅")
    lines.append(f"• Need review: {stats.get('pending', 0)} ⏳")
    if stats.get("errors", 0) > 0:
        lines.append(f"• Errors: {stats['errors']} ❌")
    lines.append("")

    approved = [d for d in details if d.approved]
    if approved:
        lines.append(f"<b>Auto-Approved ({len(approved)}):</b>")
        for tx in approved[:MAX_APPROVED_LINES]:
            lines.append(f"• {html.escape(tx.payee)}: ${abs(tx.amount):.2f} → {html.escape(tx.category)}")
        if len(approved) > MAX_APPROVED_LINES:
            lines.append(f"• ... and {len(approved) - MAX_APPROVED_LINES} more")
        lines.append("")

    pending = [d for d in details if not d.approved]
    if pending:
        lines.append(f"<b>Need Review ({len(pending)}):</b>")
        for tx in pending[:MAX_PENDING_LINES]:
            pct = round(tx.confidence * 100)
            lines.append(
                f"• {html.escape(tx.payee)}: ${abs(tx.amount):.2f} → {html.escape(tx.category)} ({pct}%)"
            )
        if len(pending) > MAX_PENDING_LINES:
            lines.append(f"• ... and {len(pending) - MAX_PENDING_LINES} more")

    return "\n".join(lines).rstrip()


class TelegramNotifier(ResilientClient):
    """Sends run summaries to one Telegram chat. No usage budget."""

    provider = "telegram"
    error_class = NotificationError

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        base_url: str = "https://api.telegram.org",
        **kwargs: Any,
    ):
        super().__init__(f"{base_url.rstrip('/')}/bot{bot_token}", **kwargs)
        self.bot_token = bot_token
        self.chat_id = chat_id

    @property
    def configured(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    def send_message(self, text: str, parse_mode: str = "HTML") -> Dict[str, Any]:
        """
        Send one message to the configured chat.

        Raises:
            NotificationError: If Telegram rejects the message
        """
        payload = self._request(
            "POST",
            "/sendMessage",
            json_body={
                "chat_id": self.chat_id,
                "text": text,
                "parse_mode": parse_mode,
                "disable_web_page_preview": True,
            },
        )
        if not payload.get("ok", False):
            description = payload.get("description") or "Unknown error"
            raise NotificationError(
                f"Telegram API error: {description}",
                provider_message=description,
            )
        return payload.get("result", {})

    def notify(
        self,
        stats: Dict[str, int],
        details: List[ProcessedTransaction],
        date: Optional[str] = None,
    ) -> None:
        """Send the run summary, or log and skip when Telegram is not configured."""
        if not self.configured:
            logger.warning("Telegram not configured, skipping notification")
            return

        self.send_message(format_summary(stats, details, date))
        logger.info("Run summary sent to Telegram")
