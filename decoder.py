"""Decoding of CSV transaction rows into ``TransactionRecord`` values.

Rows that cannot be decoded never reach the engine: ``read_transactions``
logs them and moves on to the next row.
"""

import csv
from typing import Iterator, Mapping, Optional, TextIO

import structlog
from pydantic import ValidationError

from models import TransactionRecord

logger = structlog.get_logger()

FIELDNAMES = ("type", "client", "tx", "amount")


class DecodeError(ValueError):
    pass


def validate_record(record: TransactionRecord) -> TransactionRecord:
    """Apply the per-type amount rules to a decoded record.

    Deposits and withdrawals need a non-negative amount. Any amount given on
    a dispute, resolve or chargeback is dropped.
    """
    if record.type.carries_amount:
        if record.amount is None:
            raise DecodeError(f"{record.type.value} {record.tx} has no amount")
        if record.amount < 0:
            raise DecodeError(f"{record.type.value} {record.tx} has a negative amount")
        return record

    if record.amount is not None:
        return record.model_copy(update={"amount": None})
    return record


def decode_row(row: Mapping[Optional[str], object]) -> TransactionRecord:
    fields = {}
    for key, value in row.items():
        # extra columns land under the None key
        if key is None:
            continue
        if isinstance(value, str):
            value = value.strip()
        fields[key.strip()] = value

    if not fields.get("amount"):
        fields["amount"] = None

    try:
        record = TransactionRecord(**{name: fields.get(name) for name in FIELDNAMES})
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise DecodeError(errors) from e

    return validate_record(record)


def read_transactions(stream: TextIO) -> Iterator[TransactionRecord]:
    """Yield every well-formed record of a CSV stream, in order."""
    reader = csv.DictReader(stream, skipinitialspace=True)
    for row in reader:
        try:
            yield decode_row(row)
        except DecodeError as e:
            logger.warning(
                "Skipping malformed transaction record",
                line=reader.line_num,
                error=str(e)
            )
