"""
File delivery channel, used for dry runs
"""
import json
import re
import uuid
from pathlib import Path

from nycping.delivery.base import DeliveryChannel, DeliveryResult

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


class FileDelivery(DeliveryChannel):
    name = "file"

    def __init__(self, output_dir: str = "output"):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.sent = []

    async def send_email(self, *, to: str, subject: str, html: str, text: str) -> DeliveryResult:
        message_id = uuid.uuid4().hex[:12]
        stem = f"{_UNSAFE.sub('_', to)}_{message_id}"

        (self.output_dir / f"{stem}.html").write_text(html, encoding="utf-8")
        (self.output_dir / f"{stem}.txt").write_text(text, encoding="utf-8")
        (self.output_dir / f"{stem}.json").write_text(
            json.dumps({"id": message_id, "to": to, "subject": subject}, indent=2),
            encoding="utf-8",
        )

        self.sent.append((to, subject))
        return DeliveryResult(success=True, id=message_id)
