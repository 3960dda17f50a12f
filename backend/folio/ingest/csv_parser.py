"""Generic broker CSV parsing.

The parser only turns rows into transaction payloads; business validation
(future dates, lot rules, positive prices) happens when the payloads are
imported.
"""

from __future__ import annotations

import io
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

import pandas as pd

from folio.core.errors import ValidationError
from folio.models import TransactionType

HEADER_ALIASES: dict[str, tuple[str, ...]] = {
    "date": ("date", "trade date", "transaction date"),
    "type": ("type", "transaction type", "action"),
    "symbol": ("symbol", "ticker", "stock symbol"),
    "quantity": ("quantity", "shares", "qty"),
    "price": ("price", "unit price", "share price"),
    "commission": ("commission", "fee", "fees"),
    "currency": ("currency",),
    "cash_amount": ("amount", "cash amount", "total"),
    "fx_rate": ("fx rate", "exchange rate"),
    "notes": ("notes", "description", "memo"),
}

REQUIRED_COLUMNS = ("date", "type", "symbol")

TYPE_ALIASES: dict[str, TransactionType] = {
    "BUY": TransactionType.BUY,
    "BOUGHT": TransactionType.BUY,
    "PURCHASE": TransactionType.BUY,
    "SELL": TransactionType.SELL,
    "SOLD": TransactionType.SELL,
    "SALE": TransactionType.SELL,
    "DIVIDEND": TransactionType.DIVIDEND,
    "DIV": TransactionType.DIVIDEND,
    "CASH DIVIDEND": TransactionType.DIVIDEND,
    "DIVIDEND REINVEST": TransactionType.DIVIDEND_REINVEST,
    "DIVIDEND_REINVEST": TransactionType.DIVIDEND_REINVEST,
    "DIVIDENDREINVEST": TransactionType.DIVIDEND_REINVEST,
    "DRIP": TransactionType.DIVIDEND_REINVEST,
    "REINVEST": TransactionType.DIVIDEND_REINVEST,
    "SPLIT": TransactionType.SPLIT,
    "STOCK SPLIT": TransactionType.SPLIT,
    "MERGER": TransactionType.MERGER,
    "SPINOFF": TransactionType.SPINOFF,
    "SPIN-OFF": TransactionType.SPINOFF,
    "TICKER CHANGE": TransactionType.TICKER_CHANGE,
    "SYMBOL CHANGE": TransactionType.TICKER_CHANGE,
}

DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%d/%m/%Y",
    "%Y-%m-%d %H:%M:%S",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %I:%M:%S %p",
    "%B %d, %Y",
    "%b %d, %Y",
    "%Y/%m/%d",
)

_CURRENCY_SIGNS = re.compile(r"[$€£,\s]")


@dataclass(frozen=True)
class RowError:
    line: int
    message: str
    raw: str
    field: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"line": self.line, "field": self.field, "message": self.message, "raw": self.raw}


@dataclass(frozen=True)
class ParsedRow:
    line: int
    raw: str
    payload: dict[str, Any]


@dataclass
class ParseResult:
    rows: list[ParsedRow] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return len(self.rows) + len({error.line for error in self.errors})


def parse_date(value: str) -> date:
    text = value.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError as exc:
        raise ValidationError(f"unable to parse date: {value}") from exc


def parse_decimal(value: str) -> Decimal | None:
    """Read broker-formatted numbers: ``$1,234.50``, ``(12.5)`` for negatives, blank for none."""

    text = _CURRENCY_SIGNS.sub("", value or "")
    if text in ("", "-"):
        return None
    negative = text.startswith("(") and text.endswith(")")
    if negative:
        text = text[1:-1]
    try:
        number = Decimal(text)
    except InvalidOperation as exc:
        raise ValidationError(f"invalid decimal value: {value}") from exc
    if not number.is_finite():
        raise ValidationError(f"invalid decimal value: {value}")
    return -number if negative else number


def parse_type(value: str) -> TransactionType:
    key = " ".join(value.strip().upper().split())
    try:
        return TYPE_ALIASES[key]
    except KeyError as exc:
        raise ValidationError(f"unknown transaction type: {value}") from exc


def _column_map(headers: list[str]) -> dict[str, str]:
    normalised = {" ".join(str(header).strip().lower().split()): header for header in headers}
    columns: dict[str, str] = {}
    for name, aliases in HEADER_ALIASES.items():
        for alias in aliases:
            if alias in normalised:
                columns[name] = normalised[alias]
                break
    missing = [name for name in REQUIRED_COLUMNS if name not in columns]
    if missing:
        raise ValidationError(f"missing required column: {', '.join(missing)}")
    return columns


def _read_frame(content: str | bytes) -> pd.DataFrame:
    if isinstance(content, bytes):
        content = content.decode("utf-8-sig")
    elif content.startswith("\ufeff"):
        content = content[1:]
    if not content.strip():
        raise ValidationError("CSV file is empty")
    try:
        return pd.read_csv(
            io.StringIO(content),
            dtype=str,
            keep_default_na=False,
            skipinitialspace=True,
            skip_blank_lines=False,
        )
    except pd.errors.EmptyDataError as exc:
        raise ValidationError("CSV file is empty") from exc
    except pd.errors.ParserError as exc:
        raise ValidationError(f"failed to read CSV: {exc}") from exc


def parse_csv(content: str | bytes) -> ParseResult:
    """Parse a generic CSV export into transaction payloads.

    Line numbers count the header as line 1. A file-level problem (empty file,
    unreadable CSV, missing required columns) raises ``ValidationError``;
    row-level problems are collected in ``ParseResult.errors``.
    """

    frame = _read_frame(content)
    columns = _column_map(list(frame.columns))
    result = ParseResult()

    for position, record in enumerate(frame.to_dict(orient="records")):
        line = position + 2
        values = {key: "" if pd.isna(value) else str(value).strip() for key, value in record.items()}
        if not any(values.values()):
            continue
        raw = ",".join(values.values())

        def cell(name: str) -> str:
            column = columns.get(name)
            return values.get(column, "") if column is not None else ""

        current = "date"
        try:
            payload: dict[str, Any] = {"date": parse_date(cell("date"))}
            current = "type"
            payload["type"] = parse_type(cell("type"))
            current = "symbol"
            symbol = cell("symbol").upper()
            if not symbol:
                raise ValidationError("symbol is required")
            payload["symbol"] = symbol
            for name in ("quantity", "price", "commission", "cash_amount", "fx_rate"):
                current = name
                number = parse_decimal(cell(name))
                if number is not None:
                    payload[name] = number
        except ValidationError as exc:
            result.errors.append(RowError(line=line, field=current, message=str(exc), raw=raw))
            continue

        if cell("currency"):
            payload["currency"] = cell("currency").upper()
        if cell("notes"):
            payload["notes"] = cell("notes")
        result.rows.append(ParsedRow(line=line, raw=raw, payload=payload))

    if not result.rows and not result.errors:
        raise ValidationError("CSV must contain header row and at least one data row")
    return result


__all__ = [
    "ParseResult",
    "ParsedRow",
    "RowError",
    "parse_csv",
    "parse_date",
    "parse_decimal",
    "parse_type",
]
