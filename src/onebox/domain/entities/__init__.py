"""Domain entities."""

from onebox.domain.entities.email_message import ParsedEmail

__all__ = ["ParsedEmail"]
