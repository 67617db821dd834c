"""MIME parser: raw RFC 822 bytes to the fields the pipeline needs."""

from __future__ import annotations

import email
import email.message
import email.policy
import email.utils
import re
from dataclasses import dataclass
from datetime import UTC, datetime

_TAG_RE = re.compile(r"<[^>]*>")


@dataclass
class ParsedEmail:
    """Structured representation of a parsed message."""

    message_id: str
    subject: str
    from_display: str
    from_address: str
    to_display: str
    to_addresses: list[str]
    date: datetime | None
    body_text: str | None
    body_html: str | None

    @property
    def text(self) -> str:
        """Plain body, falling back to the HTML body with tags stripped."""
        if self.body_text:
            return self.body_text
        if self.body_html:
            return _TAG_RE.sub("", self.body_html)
        return ""


class MimeParser:
    """Stateless parser: raw RFC 822 bytes → ParsedEmail."""

    def parse(self, raw_bytes: bytes) -> ParsedEmail:
        msg = email.message_from_bytes(raw_bytes, policy=email.policy.default)

        body_text, body_html = self._extract_bodies(msg)
        from_header = str(msg.get("From", "") or "")
        to_header = str(msg.get("To", "") or "")

        return ParsedEmail(
            message_id=str(msg.get("Message-ID", "") or "").strip(),
            subject=str(msg.get("Subject", "") or ""),
            from_display=from_header,
            from_address=self._first_address(from_header),
            to_display=to_header,
            to_addresses=self._parse_address_list(to_header),
            date=self._parse_date(msg.get("Date")),
            body_text=body_text,
            body_html=body_html,
        )

    def _extract_bodies(self, msg: email.message.Message) -> tuple[str | None, str | None]:
        """Walk MIME parts and return (plain_text, html_text)."""
        body_text: str | None = None
        body_html: str | None = None

        for part in msg.walk():
            # Multipart containers have no content of their own
            if part.get_content_maintype() == "multipart":
                continue

            disposition = str(part.get("Content-Disposition", ""))
            if "attachment" in disposition:
                continue

            content_type = part.get_content_type()
            if content_type not in ("text/plain", "text/html"):
                continue

            try:
                payload = part.get_content()
            except (LookupError, ValueError):
                # Unknown charset or broken transfer encoding
                raw = part.get_payload(decode=True) or b""
                payload = raw.decode("utf-8", errors="replace")

            if not isinstance(payload, str):
                continue
            if content_type == "text/plain" and body_text is None:
                body_text = payload
            elif content_type == "text/html" and body_html is None:
                body_html = payload

        return body_text, body_html

    def _parse_date(self, header_value: object) -> datetime | None:
        if not header_value:
            return None
        try:
            parsed = email.utils.parsedate_to_datetime(str(header_value))
        except (TypeError, ValueError):
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return parsed

    def _first_address(self, header_value: str) -> str:
        addresses = self._parse_address_list(header_value)
        return addresses[0] if addresses else header_value.strip()

    def _parse_address_list(self, header_value: str | None) -> list[str]:
        if not header_value:
            return []
        return [addr for _, addr in email.utils.getaddresses([header_value]) if addr]
