"""
Deterministic keyword matcher.

The last step of the extraction chain. It never fails: text with no
recognizable words yields an expense of 0 in category Other.

Patterns cover English and Indonesian.
"""

import re
from decimal import Decimal
from typing import Optional

from moneytalk.models.transaction import (
    TransactionCandidate,
    TransactionCategory,
    TransactionType,
)


INCOME_PATTERN = re.compile(
    r"\b(received|earned|salary|income|got paid|gaji|terima|pendapatan|bonus|komisi|upah)\b",
    re.IGNORECASE,
)
EXPENSE_PATTERN = re.compile(
    r"\b(spent|paid|bought|purchase|beli|bayar|buat|untuk|keluar|pengeluaran)\b",
    re.IGNORECASE,
)
AMOUNT_PATTERN = re.compile(r"\b(\d+(?:[.,]\d+)?)\b")

# Checked in order; the first match wins
CATEGORY_PATTERNS = [
    (TransactionCategory.GROCERIES, r"\b(groceries|supermarket|food shopping|belanja|makanan|sembako|pasar)\b"),
    (TransactionCategory.DINING, r"\b(restaurant|lunch|dinner|coffee|makan|restoran|kafe|warung)\b"),
    (TransactionCategory.HOUSING, r"\b(rent|mortgage|housing|sewa|rumah|kos|kontrakan)\b"),
    (TransactionCategory.TRANSPORT, r"\b(uber|lyft|taxi|bus|train|ojek|angkot|transportasi|bensin)\b"),
    (TransactionCategory.HEALTHCARE, r"\b(doctor|hospital|medicine|healthcare|dokter|rumah sakit|obat|kesehatan)\b"),
    (TransactionCategory.SHOPPING, r"\b(clothes|shoes|shopping|baju|sepatu|belanja|fashion)\b"),
    (TransactionCategory.EDUCATION, r"\b(school|tuition|books|education|sekolah|kuliah|buku|pendidikan)\b"),
    (TransactionCategory.SALARY, r"\b(salary|paycheck|gaji|upah)\b"),
    (TransactionCategory.BILLS, r"\b(bill|utility|electricity|water|internet|tagihan|listrik|air|wifi)\b"),
]
CATEGORY_PATTERNS = [
    (category, re.compile(pattern, re.IGNORECASE))
    for category, pattern in CATEGORY_PATTERNS
]


class KeywordMatcher:
    """Classifies a sentence by keyword."""

    name = "keyword"

    def detect_type(self, text: str) -> TransactionType:
        """Income keywords win over expense keywords."""
        if INCOME_PATTERN.search(text):
            return TransactionType.INCOME
        return TransactionType.EXPENSE

    def detect_amount(self, text: str) -> Decimal:
        """First number in the text; a comma is read as the decimal separator."""
        match = AMOUNT_PATTERN.search(text)
        if not match:
            return Decimal("0")
        return Decimal(match.group(1).replace(",", "."))

    def detect_category(
        self,
        text: str,
        transaction_type: TransactionType,
    ) -> TransactionCategory:
        for category, pattern in CATEGORY_PATTERNS:
            if pattern.search(text):
                return category
        if transaction_type == TransactionType.INCOME:
            return TransactionCategory.INCOME
        return TransactionCategory.OTHER

    def match(
        self,
        text: Optional[str],
        description: Optional[str] = None,
    ) -> TransactionCandidate:
        """
        Build a candidate from keywords alone.

        Args:
            text: The sentence to classify (None is treated as empty)
            description: Description for the candidate (defaults to text)
        """
        text = text or ""
        transaction_type = self.detect_type(text)

        return TransactionCandidate(
            amount=self.detect_amount(text),
            category=self.detect_category(text, transaction_type),
            type=transaction_type,
            description=text if description is None else description,
            provider=self.name,
        )
