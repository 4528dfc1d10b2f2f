"""RFC 822 parsing: raw message bytes -> ParsedEmail."""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from typing import Optional

from bs4 import BeautifulSoup

from onebox.domain.entities.email_message import ParsedEmail
from onebox.domain.errors import MessageParseError

NO_SUBJECT = "No Subject"


def _addresses(em: EmailMessage, header: str) -> list[str]:
    out: list[str] = []
    for value in em.get_all(header) or []:
        addresses = getattr(value, "addresses", None)
        if addresses:
            out.extend(str(a) for a in addresses)
        elif str(value).strip():
            out.append(str(value).strip())
    return out


def _part_content(em: EmailMessage, subtype: str) -> Optional[str]:
    part = em.get_body(preferencelist=(subtype,))
    if part is None or part.get_content_type() != f"text/{subtype}":
        return None
    content = part.get_content()
    return content.strip() if isinstance(content, str) else None


def html_to_text(html: str) -> str:
    text = BeautifulSoup(html, "html.parser").get_text(separator="\n")
    lines = (line.strip() for line in text.splitlines())
    return "\n".join(line for line in lines if line)


def _message_date(em: EmailMessage, fallback: Optional[datetime]) -> datetime:
    # Date parsing can be messy; fall back to the server's internal date, then now
    header = em.get("Date")
    try:
        date = header.datetime if header is not None else None
    except Exception:
        date = None
    if date is None:
        date = fallback or datetime.now(timezone.utc)
        if date.tzinfo is None:
            # imapclient hands INTERNALDATE back as naive local time
            date = date.astimezone(timezone.utc)
    if date.tzinfo is None:
        date = date.replace(tzinfo=timezone.utc)
    return date


def parse_rfc822(rfc822_bytes: bytes, internal_date: Optional[datetime] = None) -> ParsedEmail:
    """Parse raw message bytes.

    Messages without a Message-Id get a stable id derived from their content
    so repeated syncs still map onto the same natural key.
    """
    if not rfc822_bytes:
        raise MessageParseError("empty message")

    try:
        em = BytesParser(policy=policy.default).parsebytes(rfc822_bytes)

        message_id = str(em.get("Message-Id") or "").strip()
        if not message_id:
            message_id = f"<sha256.{hashlib.sha256(rfc822_bytes).hexdigest()}@onebox>"

        subject = str(em.get("Subject") or "").strip() or NO_SUBJECT
        sender = str(em.get("From") or "").strip()

        html = _part_content(em, "html")
        text = _part_content(em, "plain")
        if text is None:
            text = html_to_text(html) if html else ""

        thread_hint = em.get("In-Reply-To") or em.get("Thread-Index")

        return ParsedEmail(
            message_id=message_id,
            subject=subject,
            sender=sender,
            to=_addresses(em, "To"),
            cc=_addresses(em, "Cc"),
            bcc=_addresses(em, "Bcc"),
            date=_message_date(em, internal_date),
            text=text,
            html=html,
            metadata={
                "content_type": em.get_content_type(),
                **({"thread_hint": str(thread_hint)} if thread_hint else {}),
            },
        )
    except MessageParseError:
        raise
    except Exception as e:
        raise MessageParseError(f"Failed to parse message: {e}") from e
