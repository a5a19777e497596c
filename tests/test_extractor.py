"""Tests for the provider chain, keyword fallback and transcription."""

import asyncio
from decimal import Decimal
from io import BytesIO

import pytest
from PIL import Image

from fakes import FakeProvider, failing_provider
from moneytalk.agents import RECEIPT_DESCRIPTION, TransactionExtractor, TranscriptionError
from moneytalk.models.audit import AuditEventType
from moneytalk.models.transaction import TransactionCategory, TransactionType


GOOD_PAYLOAD = '{"type": "expense", "category": "Groceries", "amount": 50, "timezone": "UTC"}'


def make_image(size=(64, 64)) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", size, (200, 180, 160)).save(buffer, format="PNG")
    return buffer.getvalue()


class TestProviderChain:
    """Tests for provider ordering and fallback reporting."""

    def test_primary_provider_result(self, audit_logger):
        primary = FakeProvider("gemini", text_response=GOOD_PAYLOAD)
        secondary = FakeProvider("openai", text_response=GOOD_PAYLOAD)
        extractor = TransactionExtractor([primary, secondary], audit_logger=audit_logger)

        candidate = asyncio.run(extractor.extract(text="I spent $50 for groceries"))

        assert candidate.provider == "gemini"
        assert candidate.used_backup_provider is False
        assert candidate.amount == Decimal("50")
        assert candidate.description == "I spent $50 for groceries"
        assert secondary.prompts == []
        assert audit_logger.events_of_type(AuditEventType.TRANSACTION_EXTRACTED)

    def test_prompt_carries_context(self):
        primary = FakeProvider("gemini", text_response=GOOD_PAYLOAD)
        extractor = TransactionExtractor([primary])

        asyncio.run(extractor.extract_text("kemarin beli kopi 20000", timezone="Asia/Jakarta"))

        prompt = primary.prompts[0]
        assert "Asia/Jakarta" in prompt
        assert "kemarin beli kopi 20000" in prompt
        assert "Groceries" in prompt and "Other" in prompt

    def test_secondary_used_when_primary_fails(self, audit_logger):
        fallbacks = []
        extractor = TransactionExtractor(
            [failing_provider("gemini"), FakeProvider("openai", text_response=GOOD_PAYLOAD)],
            audit_logger=audit_logger,
            on_fallback=fallbacks.append,
        )

        candidate = asyncio.run(extractor.extract(text="spent 50 on groceries"))

        assert candidate.provider == "openai"
        assert candidate.used_backup_provider is True
        assert fallbacks == ["openai"]
        assert audit_logger.events_of_type(AuditEventType.PROVIDER_FAILED)
        assert audit_logger.events_of_type(AuditEventType.PROVIDER_FALLBACK)

    def test_malformed_json_moves_to_next_provider(self):
        extractor = TransactionExtractor([
            FakeProvider("gemini", text_response="Sure! Here is your JSON"),
            FakeProvider("openai", text_response=GOOD_PAYLOAD),
        ])
        candidate = asyncio.run(extractor.extract(text="spent 50"))
        assert candidate.provider == "openai"

    def test_keyword_fallback_when_all_fail(self, audit_logger):
        fallbacks = []
        extractor = TransactionExtractor(
            [failing_provider("gemini"), failing_provider("openai")],
            audit_logger=audit_logger,
            on_fallback=fallbacks.append,
        )

        candidate = asyncio.run(extractor.extract(text="terima gaji 5000000"))

        assert candidate.provider == "keyword"
        assert candidate.used_backup_provider is True
        assert candidate.type == TransactionType.INCOME
        assert candidate.category == TransactionCategory.SALARY
        assert fallbacks == ["keyword"]
        assert audit_logger.events_of_type(AuditEventType.KEYWORD_FALLBACK_USED)

    def test_no_providers_uses_keywords(self):
        candidate = asyncio.run(TransactionExtractor([]).extract(text="spent 12 on lunch"))
        assert candidate.provider == "keyword"
        assert candidate.category == TransactionCategory.DINING

    def test_failing_callback_does_not_break_extraction(self):
        def explode(name):
            raise RuntimeError("ui gone")

        extractor = TransactionExtractor([], on_fallback=explode)
        candidate = asyncio.run(extractor.extract(text="spent 5"))
        assert candidate.amount == Decimal("5")


class TestImageExtraction:
    """Tests for receipt extraction."""

    def test_image_sent_as_jpeg(self):
        provider = FakeProvider(
            "gemini",
            image_response='{"type": "expense", "amount": 12.5, "category": "Groceries", "items": ["milk"]}',
        )
        extractor = TransactionExtractor([provider])

        candidate = asyncio.run(extractor.extract(image=make_image()))

        assert provider.images[0][:3] == b"\xff\xd8\xff"
        assert candidate.amount == Decimal("12.5")
        assert candidate.description == RECEIPT_DESCRIPTION
        assert candidate.items[0].name == "milk"

    def test_image_wins_over_text(self):
        provider = FakeProvider(
            "gemini",
            text_response=GOOD_PAYLOAD,
            image_response='{"type": "expense", "amount": 7}',
        )
        extractor = TransactionExtractor([provider])
        candidate = asyncio.run(extractor.extract(text="spent 50", image=make_image()))
        assert candidate.amount == Decimal("7")

    def test_unreadable_image_sent_as_is(self):
        provider = FakeProvider("gemini", image_response='{"type": "expense", "amount": 1}')
        extractor = TransactionExtractor([provider])
        asyncio.run(extractor.extract_image(b"not an image"))
        assert provider.images == [b"not an image"]

    def test_image_keyword_fallback(self):
        extractor = TransactionExtractor([failing_provider("gemini")])
        candidate = asyncio.run(extractor.extract_image(make_image()))
        assert candidate.provider == "keyword"
        assert candidate.amount == Decimal("0")
        assert candidate.description == RECEIPT_DESCRIPTION


class TestTranscription:
    """Tests for audio transcription through the chain."""

    def test_secondary_transcribes(self):
        fallbacks = []
        extractor = TransactionExtractor(
            [failing_provider("gemini"), FakeProvider("openai", transcript="spent 20 on taxi")],
            on_fallback=fallbacks.append,
        )
        assert asyncio.run(extractor.transcribe(b"audio")) == "spent 20 on taxi"
        assert fallbacks == ["openai"]

    def test_all_fail_raises_with_message(self):
        extractor = TransactionExtractor([failing_provider("gemini"), failing_provider("openai")])
        with pytest.raises(TranscriptionError) as excinfo:
            asyncio.run(extractor.transcribe(b"audio"))
        assert excinfo.value.message == (
            "Unable to transcribe audio. Both AI services are unavailable."
        )
