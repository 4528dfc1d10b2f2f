from __future__ import annotations
import socket
import ssl
from contextlib import contextmanager
from typing import Iterator

from imapclient.exceptions import IMAPClientError, LoginError

from onebox.domain.errors import MailAuthError, MailTransportError


@contextmanager
def imap_errors(account: str) -> Iterator[None]:
    """
    Translate imapclient/socket failures into the domain error kinds.
    Login rejections are terminal; everything else on the wire is retryable.
    """
    try:
        yield
    except LoginError as e:
        raise MailAuthError(f"{account}: login rejected: {e}") from e
    except (socket.timeout, TimeoutError) as e:
        raise MailTransportError(f"{account}: timed out: {e}") from e
    except (IMAPClientError, ssl.SSLError, OSError, EOFError) as e:
        raise MailTransportError(f"{account}: {type(e).__name__}: {e}") from e
