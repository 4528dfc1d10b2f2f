"""Domain exception hierarchy.

Adapters translate third-party exceptions into these at the boundary so the
sync engine only ever reasons about the kinds below.
"""

from __future__ import annotations


class OneBoxError(Exception):
    """Base class for all OneBox errors."""


class MailTransportError(OneBoxError):
    """Connection refused, reset or timed out. Retryable."""


class MailAuthError(OneBoxError):
    """Login rejected. Terminal for the account."""


class MessageParseError(OneBoxError):
    """A single message could not be parsed."""


class SearchIndexError(OneBoxError):
    """The search index rejected or failed an operation."""


class AccountNotFoundError(OneBoxError):
    """The registry has no account with the given id."""


class AccountRegistryError(OneBoxError):
    """The account registry could not be read or written."""
