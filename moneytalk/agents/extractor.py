"""
Natural-Language Transaction Extractor

Turns a sentence or a receipt photo into a TransactionCandidate.

CHAIN:
1. Providers in priority order (primary first)
2. KeywordMatcher as the terminal step, which never fails

Any provider error (network, auth, malformed payload) moves the chain to
the next step. There are no retries; the next provider is the retry.

CRITICAL BOUNDARIES:
- The extractor NEVER persists anything
- The candidate's amount is always a non-negative magnitude; the store
  applies the sign
- Dates leave this module in UTC
"""

from typing import Awaitable, Callable, Optional
from uuid import UUID

import structlog

from moneytalk.agents.keywords import KeywordMatcher
from moneytalk.agents.prompts import build_receipt_prompt, build_transaction_prompt
from moneytalk.agents.providers import (
    AIProvider,
    MalformedResponseError,
    TranscriptionError,
)
from moneytalk.audit import AuditLogger
from moneytalk.models.audit import AuditEventBuilder
from moneytalk.models.transaction import TransactionCandidate
from moneytalk.periods.resolver import format_utc, local_now_iso, timezone_name, utc_now
from moneytalk.services.image.processing import ImageProcessingError, prepare_receipt_jpeg
from moneytalk.validation.validator import PayloadError, parse_transaction_payload


logger = structlog.get_logger(__name__)


RECEIPT_DESCRIPTION = "Receipt purchase"


class TransactionExtractor:
    """
    Runs the provider chain and reports which step produced the result.

    Usage:
        extractor = TransactionExtractor([GeminiProvider(), OpenAIProvider()])
        candidate = await extractor.extract(text="I spent $50 for groceries")
    """

    def __init__(
        self,
        providers: Optional[list[AIProvider]] = None,
        keyword_matcher: Optional[KeywordMatcher] = None,
        audit_logger: Optional[AuditLogger] = None,
        default_timezone: Optional[str] = None,
        max_image_kb: int = 100,
        on_fallback: Optional[Callable[[str], None]] = None,
    ):
        """
        Initialize the extractor.

        Args:
            providers: AI providers in priority order (may be empty)
            keyword_matcher: Terminal deterministic step
            audit_logger: Audit sink (a local-only logger if None)
            default_timezone: Zone used when a call passes none (None = host)
            max_image_kb: Size budget for images sent to providers
            on_fallback: Called with the provider name whenever a step
                other than the primary produced the result
        """
        self._providers = list(providers or [])
        self._keywords = keyword_matcher or KeywordMatcher()
        self._audit = audit_logger or AuditLogger()
        self._default_timezone = default_timezone
        self._max_image_kb = max_image_kb
        self._on_fallback = on_fallback

    @property
    def provider_names(self) -> list[str]:
        return [provider.name for provider in self._providers]

    async def extract(
        self,
        text: Optional[str] = None,
        image: Optional[bytes] = None,
        timezone: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> TransactionCandidate:
        """
        Extract a candidate from text or from a receipt image.

        When both are given the image wins. Never raises for provider
        failures; the keyword matcher always produces a result.
        """
        if image is not None:
            return await self.extract_image(image, timezone, correlation_id)
        return await self.extract_text(text or "", timezone, correlation_id)

    async def extract_text(
        self,
        text: str,
        timezone: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> TransactionCandidate:
        """Extract a candidate from a spoken or typed sentence."""
        tz = timezone or self._default_timezone
        prompt = build_transaction_prompt(
            text=text,
            timezone_name=timezone_name(tz),
            local_datetime=local_now_iso(tz),
            utc_datetime=format_utc(utc_now()),
        )

        async def call(provider: AIProvider) -> TransactionCandidate:
            raw = await provider.analyze_text(prompt)
            return self._parse(provider, raw, tz, description=text)

        candidate = await self._run_chain(call, correlation_id)
        if candidate is not None:
            return candidate

        return await self._keyword_fallback(text, text, correlation_id)

    async def extract_image(
        self,
        image: bytes,
        timezone: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> TransactionCandidate:
        """Extract a candidate from receipt image bytes."""
        tz = timezone or self._default_timezone

        try:
            jpeg = prepare_receipt_jpeg(image, self._max_image_kb)
        except ImageProcessingError as e:
            logger.warning("receipt_image_unreadable", error=str(e))
            jpeg = image

        prompt = build_receipt_prompt(timezone_name(tz))

        async def call(provider: AIProvider) -> TransactionCandidate:
            raw = await provider.analyze_image(prompt, jpeg)
            return self._parse(provider, raw, tz, description=RECEIPT_DESCRIPTION)

        candidate = await self._run_chain(call, correlation_id)
        if candidate is not None:
            return candidate

        return await self._keyword_fallback("", RECEIPT_DESCRIPTION, correlation_id)

    async def transcribe(
        self,
        audio: bytes,
        filename: str = "recording.m4a",
        language: str = "en",
    ) -> str:
        """
        Transcribe a recording through the provider chain.

        There is no deterministic fallback for audio.

        Raises:
            TranscriptionError: If every provider failed
        """
        for index, provider in enumerate(self._providers):
            try:
                text = await provider.transcribe(audio, filename=filename, language=language)
            except Exception as e:
                logger.warning(
                    "transcription_provider_failed",
                    provider=provider.name,
                    error=str(e),
                )
                await self._audit.log(AuditEventBuilder.provider_failed(provider.name, str(e)))
                continue

            if index > 0:
                self._notify_fallback(provider.name)
            return text

        raise TranscriptionError()

    # -------------------------------------------------------------------------
    # Chain internals
    # -------------------------------------------------------------------------

    def _parse(
        self,
        provider: AIProvider,
        raw: str,
        tz: Optional[str],
        description: str,
    ) -> TransactionCandidate:
        try:
            return parse_transaction_payload(raw, user_timezone=tz, description=description)
        except PayloadError as e:
            raise MalformedResponseError(f"{provider.name}: {e}") from e

    async def _run_chain(
        self,
        call: Callable[[AIProvider], Awaitable[TransactionCandidate]],
        correlation_id: Optional[UUID],
    ) -> Optional[TransactionCandidate]:
        """Try each provider in order; None when all of them failed."""
        previous: Optional[str] = None

        for index, provider in enumerate(self._providers):
            if previous is not None:
                await self._audit.log(
                    AuditEventBuilder.provider_fallback(previous, provider.name, correlation_id)
                )

            try:
                candidate = await call(provider)
            except Exception as e:
                logger.warning("provider_failed", provider=provider.name, error=str(e))
                await self._audit.log(
                    AuditEventBuilder.provider_failed(provider.name, str(e), correlation_id)
                )
                previous = provider.name
                continue

            used_backup = index > 0
            candidate = candidate.model_copy(update={
                "provider": provider.name,
                "used_backup_provider": used_backup,
            })
            if used_backup:
                self._notify_fallback(provider.name)

            await self._audit.log(AuditEventBuilder.transaction_extracted(
                candidate.extraction_id,
                provider.name,
                used_backup,
                correlation_id,
            ))
            return candidate

        return None

    async def _keyword_fallback(
        self,
        text: str,
        description: str,
        correlation_id: Optional[UUID],
    ) -> TransactionCandidate:
        candidate = self._keywords.match(text, description=description)
        candidate = candidate.model_copy(update={"used_backup_provider": True})

        logger.info("keyword_fallback_used", providers=self.provider_names)
        await self._audit.log(
            AuditEventBuilder.keyword_fallback_used(candidate.extraction_id, correlation_id)
        )
        self._notify_fallback(self._keywords.name)
        return candidate

    def _notify_fallback(self, provider_name: str) -> None:
        if self._on_fallback is None:
            return
        try:
            self._on_fallback(provider_name)
        except Exception as e:
            logger.warning("fallback_callback_failed", provider=provider_name, error=str(e))
