"""Keyword-scoring classifier for running without a model provider."""

from __future__ import annotations

import re

from onebox.domain.models import EmailCategory, EmailRecord, EnrichmentResult
from onebox.infrastructure.enrichment.base import BatchingGateway

KEYWORDS: dict[EmailCategory, tuple[str, ...]] = {
    EmailCategory.INTERESTED: (
        "interested", "curious", "tell me more", "sounds interesting", "would like to know",
        "questions", "can you explain", "more information", "details", "schedule a call",
        "discuss", "opportunity", "position", "role", "job", "career",
    ),
    EmailCategory.MEETING_BOOKED: (
        "meeting", "call", "schedule", "calendar", "appointment", "booked", "confirmed",
        "zoom", "teams", "google meet", "monday", "tuesday", "wednesday", "thursday", "friday",
        "available", "invite",
    ),
    EmailCategory.NOT_INTERESTED: (
        "not interested", "no thank you", "no thanks", "decline", "not looking", "not available",
        "no time", "not right now", "maybe later", "not suitable", "not a fit",
    ),
    EmailCategory.OUT_OF_OFFICE: (
        "out of office", "vacation", "holiday", "away", "unavailable", "auto-reply",
        "automatic reply", "will be back", "returning", "temporarily unavailable",
    ),
    EmailCategory.SPAM: (
        "promotion", "offer", "discount", "sale", "buy now", "click here", "unsubscribe",
        "advertisement", "lottery", "winner", "congratulations", "free money",
        "act now", "limited time", "exclusive offer", "guaranteed", "no obligation",
    ),
}

JOB_SITE_DOMAINS = ("linkedin.com", "glassdoor.com", "indeed.com")

_PATTERNS = {
    category: [re.compile(rf"\b{re.escape(k)}\b") for k in words]
    for category, words in KEYWORDS.items()
}

REPLY_TEMPLATES: dict[EmailCategory, str] = {
    EmailCategory.INTERESTED: "Hi {name},\n\nThank you for your interest!\n\n{context}\n\nBest regards",
    EmailCategory.MEETING_BOOKED: (
        "Hi {name},\n\nThank you for scheduling the meeting! I'm looking forward to our conversation."
        "\n\nSee you then.\n\nBest regards"
    ),
    EmailCategory.NOT_INTERESTED: (
        "Hi {name},\n\nThank you for taking the time to respond. I understand this may not be the right "
        "fit at the moment. If your situation changes, I'd be happy to talk.\n\nBest regards"
    ),
    EmailCategory.OUT_OF_OFFICE: (
        "Hi {name},\n\nThank you for your auto-reply. I'll follow up when you return.\n\nBest regards"
    ),
    EmailCategory.SPAM: "Hi,\n\nThank you for your email.\n\n{context}\n\nBest regards",
}


def _sender_name(sender: str) -> str:
    match = re.search(r"([\w.+-]+)@", sender)
    return match.group(1) if match else "there"


class RuleBasedClassifier(BatchingGateway):
    """No network, no failures: scores keyword hits per category."""

    name = "rules"

    def __init__(self, product_context: str = "", concurrency: int = 10, batch_delay: float = 0.1):
        super().__init__(concurrency, batch_delay)
        self.product_context = product_context

    def score(self, record: EmailRecord) -> dict[EmailCategory, int]:
        text = f"{record.subject} {record.body}".lower()
        return {
            category: sum(1 for p in patterns if p.search(text))
            for category, patterns in _PATTERNS.items()
        }

    async def classify(self, record: EmailRecord) -> EnrichmentResult:
        scores = self.score(record)
        sender = record.sender.lower()

        if any(domain in sender for domain in JOB_SITE_DOMAINS) and not scores[EmailCategory.SPAM]:
            return EnrichmentResult(
                category=EmailCategory.INTERESTED,
                confidence=0.7,
                rationale="Job-related email from a known job site",
            )

        best = max(scores, key=lambda c: scores[c])
        hits = scores[best]
        if not hits:
            return EnrichmentResult(
                category=EmailCategory.SPAM,
                confidence=0.5,
                rationale="No keyword indicators found",
            )
        return EnrichmentResult(
            category=best,
            confidence=min(0.9, 0.5 + hits * 0.1),
            rationale=f"Rule-based classification: {hits} matching keywords for {best.value}",
        )

    async def suggest_reply(self, record: EmailRecord) -> str:
        category = record.category or (await self.classify(record)).category
        template = REPLY_TEMPLATES[category]
        return template.format(name=_sender_name(record.sender), context=self.product_context).strip()
