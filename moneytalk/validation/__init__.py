"""Validation package."""

from moneytalk.validation.validator import (
    PayloadError,
    TransactionValidator,
    load_json_object,
    parse_amount,
    parse_transaction_payload,
    strip_code_fences,
)

__all__ = [
    "PayloadError",
    "TransactionValidator",
    "load_json_object",
    "parse_amount",
    "parse_transaction_payload",
    "strip_code_fences",
]
