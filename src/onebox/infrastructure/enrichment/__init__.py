"""Enrichment gateways: categorization and reply suggestion."""

from onebox.application.ports.enrichment import EnrichmentGateway
from onebox.infrastructure.enrichment.base import FALLBACK_CONFIDENCE, fallback_result
from onebox.infrastructure.enrichment.llm import LLMEnrichmentGateway, create_llm
from onebox.infrastructure.enrichment.rules import RuleBasedClassifier
from onebox.infrastructure.settings import Settings


def create_enrichment_gateway(settings: Settings) -> EnrichmentGateway:
    """Pick the gateway for ``settings.llm_provider``."""
    if settings.llm_provider == "rules":
        return RuleBasedClassifier(
            product_context=settings.product_context,
            concurrency=settings.enrichment_rules_concurrency,
            batch_delay=settings.enrichment_rules_batch_delay_seconds,
        )
    return LLMEnrichmentGateway.from_settings(settings)


__all__ = [
    "FALLBACK_CONFIDENCE",
    "LLMEnrichmentGateway",
    "RuleBasedClassifier",
    "create_enrichment_gateway",
    "create_llm",
    "fallback_result",
]
