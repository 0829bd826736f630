"""Transaction store and record normalization."""

from ledger.store.normalizer import (
    NormalizationReport,
    NormalizedRecord,
    coerce_date,
    coerce_datetime,
    coerce_decimal,
    new_record_id,
    normalize_collection,
    normalize_record,
)
from ledger.store.transaction_store import TransactionStore

__all__ = [
    "NormalizationReport",
    "NormalizedRecord",
    "TransactionStore",
    "coerce_date",
    "coerce_datetime",
    "coerce_decimal",
    "new_record_id",
    "normalize_collection",
    "normalize_record",
]
