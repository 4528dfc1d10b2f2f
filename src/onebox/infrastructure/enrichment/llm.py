"""LLM-backed classification and reply suggestion."""

from __future__ import annotations

import asyncio
import json
import re

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from loguru import logger
from pydantic import BaseModel, ValidationError

from onebox.domain.models import EmailCategory, EmailRecord, EnrichmentResult
from onebox.infrastructure.enrichment.base import (
    CLASSIFY_BODY_CHARS,
    REPLY_BODY_CHARS,
    BatchingGateway,
    fallback_reply,
    fallback_result,
)
from onebox.infrastructure.settings import Settings

CLASSIFY_SYSTEM_PROMPT = "You are an expert email categorization AI. Always respond with valid JSON only."

CLASSIFY_PROMPT = """Analyze the following email and categorize it into one of these categories:
- interested: Shows genuine interest, asks questions, wants to know more
- meeting_booked: Confirms a meeting, provides meeting details, or schedules something
- not_interested: Declines, says no, or shows clear disinterest
- spam: Unwanted promotional content, irrelevant messages
- out_of_office: Auto-replies, vacation messages, or unavailability notices

Email Details:
From: {sender}
Subject: {subject}
Body: {body}

Respond with a JSON object containing:
{{
  "category": "one of the categories above",
  "confidence": "number between 0 and 1",
  "reasoning": "brief explanation of why this category was chosen"
}}
"""

REPLY_SYSTEM_PROMPT = "You are an expert email communication assistant. Reply with the email body only."

REPLY_PROMPT = """Based on the following email and the outreach context, write a professional and personalized reply.

Outreach context:
{context}

Email to reply to:
From: {sender}
Subject: {subject}
Body: {body}

The reply should acknowledge the sender's message, stay relevant to it, work the outreach
context in naturally and include the meeting link if appropriate.
"""

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class _ClassificationPayload(BaseModel):
    category: str
    confidence: float
    reasoning: str = ""


def create_llm(settings: Settings, temperature: float = 0.3, max_tokens: int = 500) -> BaseChatModel:
    """Create the chat model for the configured provider."""
    provider = settings.llm_provider

    if provider == "local":
        from langchain_openai import ChatOpenAI

        logger.info(f"Initializing local vLLM at {settings.vllm_base_url} with model {settings.vllm_model_name}")
        return ChatOpenAI(
            base_url=settings.vllm_base_url,
            api_key="not-needed",
            model_name=settings.vllm_model_name,
            temperature=temperature,
            max_tokens=max_tokens,
        )

    elif provider == "groq":
        from langchain_groq import ChatGroq

        if not settings.groq_api_key:
            raise ValueError("GROQ_API_KEY is required when llm_provider=groq")

        logger.info(f"Initializing Groq LLM with model {settings.groq_model_name}")
        return ChatGroq(
            api_key=settings.groq_api_key.get_secret_value(),
            model_name=settings.groq_model_name,
            temperature=temperature,
            max_tokens=max_tokens,
        )

    elif provider == "openai":
        from langchain_openai import ChatOpenAI

        if not settings.openai_api_key:
            raise ValueError("OPENAI_API_KEY is required when llm_provider=openai")

        logger.info(f"Initializing OpenAI LLM with model {settings.openai_model_name}")
        return ChatOpenAI(
            api_key=settings.openai_api_key.get_secret_value(),
            model_name=settings.openai_model_name,
            temperature=temperature,
            max_tokens=max_tokens,
        )

    else:
        raise ValueError(f"Unknown LLM provider: {provider}")


def parse_classification(content: str) -> EnrichmentResult:
    """Parse the model's JSON answer. Raises ValueError on anything malformed."""
    text = _FENCE.sub("", content.strip())
    try:
        payload = _ClassificationPayload.model_validate(json.loads(text))
    except (json.JSONDecodeError, ValidationError) as e:
        raise ValueError(f"malformed classification: {e}") from e
    return EnrichmentResult(
        category=EmailCategory.parse(payload.category),
        confidence=payload.confidence,
        rationale=payload.reasoning,
    )


class LLMEnrichmentGateway(BatchingGateway):
    """Classify and draft replies with a LangChain chat model, never raising."""

    name = "llm"

    def __init__(
        self,
        llm: BaseChatModel,
        product_context: str,
        timeout: float = 30.0,
        concurrency: int = 5,
        batch_delay: float = 1.0,
    ):
        super().__init__(concurrency, batch_delay)
        self.llm = llm
        self.product_context = product_context
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "LLMEnrichmentGateway":
        return cls(
            llm=create_llm(settings),
            product_context=settings.product_context,
            timeout=settings.enrichment_timeout_seconds,
            concurrency=settings.enrichment_llm_concurrency,
            batch_delay=settings.enrichment_llm_batch_delay_seconds,
        )

    async def _ask(self, system: str, prompt: str) -> str:
        response = await asyncio.wait_for(
            self.llm.ainvoke([SystemMessage(content=system), HumanMessage(content=prompt)]),
            timeout=self.timeout,
        )
        content = response.content
        if not isinstance(content, str) or not content.strip():
            raise ValueError("empty response")
        return content

    async def classify(self, record: EmailRecord) -> EnrichmentResult:
        prompt = CLASSIFY_PROMPT.format(
            sender=record.sender,
            subject=record.subject,
            body=record.body[:CLASSIFY_BODY_CHARS],
        )
        try:
            content = await self._ask(CLASSIFY_SYSTEM_PROMPT, prompt)
            result = parse_classification(content)
        except asyncio.TimeoutError:
            logger.warning(f"Classification timed out after {self.timeout}s for {record.id}")
            return fallback_result("timeout")
        except Exception as e:
            logger.warning(f"Classification failed for {record.id}: {e}")
            return fallback_result(str(e))

        logger.debug(f"Classified {record.id} as {result.category.value} ({result.confidence:.2f})")
        return result

    async def suggest_reply(self, record: EmailRecord) -> str:
        prompt = REPLY_PROMPT.format(
            context=self.product_context,
            sender=record.sender,
            subject=record.subject,
            body=record.body[:REPLY_BODY_CHARS],
        )
        try:
            return (await self._ask(REPLY_SYSTEM_PROMPT, prompt)).strip()
        except asyncio.TimeoutError:
            logger.warning(f"Reply generation timed out after {self.timeout}s for {record.id}")
        except Exception as e:
            logger.warning(f"Reply generation failed for {record.id}: {e}")
        return fallback_reply(self.product_context)
