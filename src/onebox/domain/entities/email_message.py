from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

@dataclass(frozen=True)
class ParsedEmail:
    message_id: str
    subject: str
    sender: str
    to: list[str]
    cc: list[str]
    bcc: list[str]
    date: datetime
    text: str
    html: Optional[str] = None
    # Raw header values that didn't map onto a field
    metadata: dict[str, str] = field(default_factory=dict)
