"""
Email the operator when a source produces malformed records
"""
import html as html_escape
import json
import logging
from typing import Optional, Sequence

from nycping.delivery.base import DeliveryChannel
from nycping.processing.validation import ScraperError

logger = logging.getLogger(__name__)

MAX_SAMPLES = 3


class OperatorAlerter:
    def __init__(self, channel: Optional[DeliveryChannel], admin_email: Optional[str]):
        self.channel = channel
        self.admin_email = admin_email

    async def report(self, source: str, errors: Sequence[ScraperError]) -> bool:
        """Returns True when an alert email went out. Never raises."""
        if not errors:
            return False
        if self.channel is None or not self.admin_email:
            logger.warning(
                f"[{source}] {len(errors)} invalid records (no admin email configured)",
                extra={"source": source},
            )
            return False

        samples = errors[:MAX_SAMPLES]
        rows = "".join(
            f"<li><code>{html_escape.escape(e.error)}</code><pre>"
            f"{html_escape.escape(json.dumps(e.payload, default=str)[:500])}</pre></li>"
            for e in samples
        )
        html = (
            f"<h2>{len(errors)} invalid records from {html_escape.escape(source)}</h2>"
            f"<ul>{rows}</ul>"
        )
        text = "\n".join(
            [f"{len(errors)} invalid records from {source}", ""]
            + [f"- {e.error}: {json.dumps(e.payload, default=str)[:500]}" for e in samples]
        )

        try:
            result = await self.channel.send_email(
                to=self.admin_email,
                subject=f"[NYC Ping] Scraper validation errors: {source}",
                html=html,
                text=text,
            )
        except Exception as e:
            logger.error(f"[{source}] operator alert failed: {e}", extra={"source": source})
            return False

        if not result.success:
            logger.error(f"[{source}] operator alert failed: {result.error}", extra={"source": source})
        return result.success
