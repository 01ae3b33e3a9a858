"""
Receipt Text Parser - provider-agnostic OCR text to structured fields

Strategy (top to bottom over trimmed lines):
1. Merchant: first non-empty line, unless it looks like OCR noise
2. Address: digit-bearing lines right under the merchant, up to the first blank line
3. Line items: lines ending in a money token with no reserved keyword
4. Totals: money token following subtotal/tax/tip/total/discount (last one wins)
5. Date/time: numeric date and HH:MM[:SS] patterns, kept verbatim
6. Payment method: card brand or masked card number line, verbatim
7. Member number: labeled loyalty/member identifier
8. Receipt number: labeled receipt/order/transaction identifier
9. Currency: ISO code printed on the receipt, else the currency symbol

Money tokens are an optional symbol, digits and an optional two-digit
fraction. A bare integer counts only where position says it is money: after a
totals keyword, or as the trailing token of an item line below the header.

The parser is pure and deterministic. Anything it cannot locate confidently is
left as None; malformed amounts are skipped, never coerced. It does not raise
on bad input.
"""
import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Tuple

import structlog

from receipt_vault.common.schemas.recognition import LineItem, ReceiptExtraction

logger = structlog.get_logger()

MAX_ADDRESS_LINES = 3

# Optional sign, optional currency symbol, digits with separators. Validity
# (grouping, two-digit fraction) is checked per locale in _parse_amount.
MONEY_TOKEN_RE = re.compile(
    r"(?<![\w$€£¥.,])"
    r"(?P<neg>-)?"
    r"(?:(?P<symbol>[$€£¥])\s?)?"
    r"(?P<neg2>-)?"
    r"(?P<number>\d[\d.,]*)"
    r"(?![\w$€£¥])"
)

# Codes win over symbols: "$" alone is read as USD, "CAD $12.00" is CAD
CURRENCY_CODE_RE = re.compile(r"\b(?P<code>USD|EUR|GBP|JPY|CAD|AUD)\b")
CURRENCY_SYMBOLS = {"$": "USD", "€": "EUR", "£": "GBP", "¥": "JPY"}

KEYWORD_RE = re.compile(
    r"\b(?:"
    r"(?P<subtotal>sub[\s-]?total)"
    r"|(?P<total>total)"
    r"|(?P<tax>tax|vat|gst|hst|pst)"
    r"|(?P<tip>tip|gratuity)"
    r"|(?P<discount>discount)"
    r"|(?P<change>change)"
    r")\b",
    re.IGNORECASE,
)
TOTAL_FIELDS = ("subtotal", "total", "tax", "tip", "discount")

# Lines that are tenders, balances or item counts rather than purchases
NON_ITEM_RE = re.compile(
    r"\b(?:balance|amount\s+due|cash|tendered|savings|items?\s+sold)\b",
    re.IGNORECASE,
)

CARD_BRAND_RE = re.compile(
    r"\b(?:visa|master\s?card|amex|american\s+express|discover|debit|credit|interac|"
    r"maestro|jcb|apple\s+pay|google\s+pay|paypal)\b",
    re.IGNORECASE,
)
MASKED_CARD_RE = re.compile(
    r"(?<![A-Za-z0-9])[*xX#]{2,}[\s-]?\d{4}\b|\bending(?:\s+in)?\s*[:#]?\s*\d{4}\b",
    re.IGNORECASE,
)

MEMBER_RE = re.compile(
    r"\b(?:member(?:ship)?|loyalty|rewards?)\b"
    r"(?:\s*(?:no\.?|num(?:ber)?|#|id))?"
    r"\s*[:#]?\s*(?P<number>\d{4,})\b",
    re.IGNORECASE,
)

RECEIPT_NUMBER_RE = re.compile(
    r"\b(?:receipt|ref(?:erence)?|order|trans(?:action)?|invoice|ticket)\b\.?"
    r"(?:\s*(?:no\.?|num(?:ber)?|#|id))?"
    r"\s*[:#]?\s*(?P<number>[A-Za-z0-9][A-Za-z0-9-]{3,})",
    re.IGNORECASE,
)

DATE_ISO_RE = re.compile(r"(?<!\d)(?P<year>\d{4})-(?P<month>\d{1,2})-(?P<day>\d{1,2})(?!\d)")
DATE_NUMERIC_RE = re.compile(r"(?<!\d)(?P<a>\d{1,2})(?P<sep>[/-])(?P<b>\d{1,2})(?P=sep)(?P<year>\d{4}|\d{2})(?!\d)")
DATE_DOTTED_RE = re.compile(r"(?<![\d.])(?P<a>\d{1,2})\.(?P<b>\d{1,2})\.(?P<year>\d{4})(?![\d.])")
TIME_RE = re.compile(r"(?<![\d:])(?:[01]?\d|2[0-3]):[0-5]\d(?::[0-5]\d)?(?:\s?[AaPp][Mm]\b)?(?![\d:])")

NAME_TRAILING_JUNK = " \t:-.=*"


@dataclass(frozen=True)
class ParserLocale:
    """
    Locale inputs for text parsing.

    Attributes:
        date_order: "MDY", "DMY", or None to accept both without disambiguation
        decimal_separator: "." (1,234.56) or "," (1.234,56)
    """
    date_order: Optional[str] = None
    decimal_separator: str = "."

    def __post_init__(self) -> None:
        if self.date_order not in (None, "MDY", "DMY"):
            raise ValueError(f"date_order must be MDY, DMY or None, got {self.date_order}")
        if self.decimal_separator not in (".", ","):
            raise ValueError(f"decimal_separator must be '.' or ',', got {self.decimal_separator}")

    @property
    def group_separator(self) -> str:
        return "," if self.decimal_separator == "." else "."

    @property
    def amount_pattern(self) -> "re.Pattern[str]":
        return _AMOUNT_PATTERNS[self.decimal_separator]


_AMOUNT_PATTERNS = {
    ".": re.compile(r"^(?:\d{1,3}(?:,\d{3})+|\d+)(?P<fraction>\.\d{2})?$"),
    ",": re.compile(r"^(?:\d{1,3}(?:\.\d{3})+|\d+)(?P<fraction>,\d{2})?$"),
}

DEFAULT_LOCALE = ParserLocale()


def _is_bare_integer(match: "re.Match[str]", locale: ParserLocale) -> bool:
    """No currency symbol and no two-digit fraction"""
    if match.group("symbol"):
        return False
    valid = locale.amount_pattern.match(match.group("number"))
    return not (valid and valid.group("fraction"))


def _parse_amount(
    match: "re.Match[str]",
    locale: ParserLocale,
    allow_integers: bool = False,
) -> Optional[Decimal]:
    """
    Turn a money-token match into a Decimal.

    A bare integer (no currency symbol, no two-digit fraction) is money only
    when the caller knows the position holds an amount. Anywhere else store
    numbers, ZIP codes and member IDs look exactly like that. A "#1234"
    integer is an identifier in every position.

    Args:
        match: MONEY_TOKEN_RE match
        locale: Decimal/grouping separators
        allow_integers: Accept bare integers

    Returns:
        Decimal amount, or None for malformed tokens
    """
    number = match.group("number")
    valid = locale.amount_pattern.match(number)
    if not valid:
        return None
    if _is_bare_integer(match, locale):
        if not allow_integers or match.string[:match.start()].rstrip().endswith("#"):
            return None

    normalized = number.replace(locale.group_separator, "").replace(locale.decimal_separator, ".")
    try:
        amount = Decimal(normalized)
    except InvalidOperation:
        return None

    if match.group("neg") or match.group("neg2"):
        amount = -amount
    return amount


def _money_tokens(
    line: str,
    locale: ParserLocale,
    allow_integers: bool = False,
) -> List[Tuple["re.Match[str]", Decimal]]:
    """All well-formed money tokens on a line, left to right"""
    tokens = []
    for match in MONEY_TOKEN_RE.finditer(line):
        amount = _parse_amount(match, locale, allow_integers)
        if amount is not None:
            tokens.append((match, amount))
    return tokens


def _is_blank(line: str) -> bool:
    """Lines without any letter or digit (rules, '====', '***') separate blocks"""
    return not any(ch.isalnum() for ch in line)


def _has_letter(text: str) -> bool:
    return any(ch.isalpha() for ch in text)


def _has_digit(text: str) -> bool:
    return any(ch.isdigit() for ch in text)


def _valid_calendar_date(year: int, month: int, day: int) -> bool:
    if year < 100:
        year += 2000
    try:
        date(year, month, day)
    except ValueError:
        return False
    return True


class ReceiptTextParser:
    """
    Generic receipt text parser.

    Provider-agnostic: works on the plain newline-separated text every OCR
    provider returns. Vendor layouts are not special-cased.
    """

    def __init__(self, locale: Optional[ParserLocale] = None):
        self.locale = locale or DEFAULT_LOCALE

    def parse(self, text: Optional[str]) -> ReceiptExtraction:
        """
        Parse recognized receipt text into structured fields.

        Args:
            text: Raw OCR text (may be empty or garbage)

        Returns:
            ReceiptExtraction with only confidently located fields set
        """
        if isinstance(text, bytes):
            text = text.decode("utf-8", errors="replace")
        if not text:
            return ReceiptExtraction()

        lines = [line.strip() for line in text.splitlines()]

        merchant_index = self._first_content_index(lines)
        merchant = None
        address_indexes: List[int] = []

        if merchant_index is not None:
            candidate = lines[merchant_index]
            if self._plausible_merchant(candidate):
                merchant = candidate
                address_indexes = self._address_indexes(lines, merchant_index)

        header = set(address_indexes)
        if merchant_index is not None:
            header.add(merchant_index)

        content = [(i, line) for i, line in enumerate(lines) if not _is_blank(line)]

        payment_method = self._find_payment_method(content)
        items: List[LineItem] = []
        for i, line in content:
            if i in header:
                continue
            item = self._parse_item(line)
            if item is not None:
                items.append(item)

        totals = self._extract_totals(content)
        receipt_date = self._find_date(content)
        receipt_time = self._find_time(content)
        member_number = self._find_member_number(content)
        receipt_number = self._find_receipt_number(content)

        extraction = ReceiptExtraction(
            merchant=merchant,
            address="\n".join(lines[i] for i in address_indexes) or None,
            total=totals.get("total"),
            subtotal=totals.get("subtotal"),
            tax=totals.get("tax"),
            tip=totals.get("tip"),
            discount=totals.get("discount"),
            date=receipt_date,
            time=receipt_time,
            payment_method=payment_method,
            member_number=member_number,
            receipt_number=receipt_number,
            currency=self._find_currency(content),
            items=items,
        )

        logger.debug("receipt_text_parsed",
                    lines=len(content),
                    merchant=merchant is not None,
                    items=len(items),
                    total=str(extraction.total) if extraction.total is not None else None)
        return extraction

    # Header (merchant / address)

    @staticmethod
    def _first_content_index(lines: List[str]) -> Optional[int]:
        for i, line in enumerate(lines):
            if not _is_blank(line):
                return i
        return None

    def _plausible_merchant(self, line: str) -> bool:
        """
        Reject OCR noise as a merchant name.

        Noise: unknown-glyph '?' marks, ellipses, fewer than two letters, or a
        money amount (an item or totals line, so the real header was lost).
        """
        if "?" in line or "..." in line or "…" in line:
            return False
        if sum(1 for ch in line if ch.isalpha()) < 2:
            return False
        return not _money_tokens(line, self.locale)

    def _is_header_stop(self, line: str) -> bool:
        return bool(
            _money_tokens(line, self.locale)
            or KEYWORD_RE.search(line)
            or self._date_in(line)
            or TIME_RE.search(line)
            or CARD_BRAND_RE.search(line)
            or MASKED_CARD_RE.search(line)
            or MEMBER_RE.search(line)
            or self._receipt_number_in(line)
        )

    def _address_indexes(self, lines: List[str], merchant_index: int) -> List[int]:
        """
        Lines directly under the merchant that read like an address.

        The first line needs digits and letters (street number + name) and
        must not end in a number, which reads as a price ("DAILY PASS 14").
        A continuation line needs letters plus a digit or comma; it may end in
        a number only in the "ANYTOWN, CA 90210" shape, with a comma.
        """
        indexes: List[int] = []
        for i in range(merchant_index + 1, len(lines)):
            line = lines[i]
            if _is_blank(line) or len(indexes) >= MAX_ADDRESS_LINES:
                break
            if self._is_header_stop(line) or not _has_letter(line):
                break
            if not indexes:
                if not _has_digit(line) or self._trailing_amount(line):
                    break
            elif not (_has_digit(line) or "," in line):
                break
            elif self._trailing_amount(line) and "," not in line:
                break
            indexes.append(i)
        return indexes

    # Items and totals

    def _trailing_amount(self, line: str) -> Optional[Tuple["re.Match[str]", Decimal]]:
        """The money token ending the line, bare integers included"""
        tokens = _money_tokens(line, self.locale, allow_integers=True)
        if not tokens or tokens[-1][0].end() != len(line):
            return None
        return tokens[-1]

    def _is_identifier_line(self, line: str) -> bool:
        """Member, receipt number, date and time lines carry numbers that are not prices"""
        return bool(
            MEMBER_RE.search(line)
            or self._receipt_number_in(line)
            or self._date_in(line)
            or TIME_RE.search(line)
        )

    def _parse_item(self, line: str) -> Optional[LineItem]:
        if KEYWORD_RE.search(line) or NON_ITEM_RE.search(line):
            return None
        if CARD_BRAND_RE.search(line) or MASKED_CARD_RE.search(line):
            return None
        if self._is_identifier_line(line):
            return None

        trailing = self._trailing_amount(line)
        if trailing is None:
            return None

        match, price = trailing
        name = line[:match.start()].rstrip(NAME_TRAILING_JUNK).strip()
        if not _has_letter(name):
            return None

        return LineItem(name=" ".join(name.split()), price=price)

    def _extract_totals(self, content: List[Tuple[int, str]]) -> Dict[str, Decimal]:
        """
        Keyword-labelled amounts. For each keyword the first amount before the
        next keyword on the line is its value; later lines overwrite earlier
        ones (corrected totals are printed further down).

        A bare integer is taken only when it ends the keyword's segment
        ("TOTAL 14"), so "SUBTOTAL (3 ITEMS) 25.97" still reads 25.97. It
        never overwrites a printed decimal amount: "TOTAL NUMBER OF ITEMS
        SOLD = 3" below "TOTAL 14.02" is a count.
        """
        totals: Dict[str, Decimal] = {}
        decimal_fields = set()

        for _, line in content:
            keywords = list(KEYWORD_RE.finditer(line))
            for position, keyword in enumerate(keywords):
                field = keyword.lastgroup
                if field not in TOTAL_FIELDS:
                    continue

                end = keywords[position + 1].start() if position + 1 < len(keywords) else len(line)
                found = self._segment_amount(line[keyword.end():end])
                if found is None:
                    continue

                amount, bare = found
                if bare and field in decimal_fields:
                    continue
                if not bare:
                    decimal_fields.add(field)
                totals[field] = abs(amount) if field == "discount" else amount

        return totals

    def _segment_amount(self, segment: str) -> Optional[Tuple[Decimal, bool]]:
        """First decimal amount in the segment, else a trailing bare integer (amount, bare)"""
        tokens = _money_tokens(segment, self.locale, allow_integers=True)
        for match, amount in tokens:
            if not _is_bare_integer(match, self.locale):
                return amount, False

        if tokens:
            match, amount = tokens[-1]
            if _is_blank(segment[match.end():]):
                return amount, True
        return None

    # Date, time, payment, member

    def _date_in(self, line: str) -> Optional[str]:
        for match in DATE_ISO_RE.finditer(line):
            if _valid_calendar_date(int(match.group("year")), int(match.group("month")), int(match.group("day"))):
                return match.group(0)

        for pattern in (DATE_NUMERIC_RE, DATE_DOTTED_RE):
            for match in pattern.finditer(line):
                a, b, year = int(match.group("a")), int(match.group("b")), int(match.group("year"))
                if self._accept_numeric_date(a, b, year):
                    return match.group(0)
        return None

    def _accept_numeric_date(self, a: int, b: int, year: int) -> bool:
        """MM/DD vs DD/MM: the configured order, or either when unset"""
        month_first = _valid_calendar_date(year, a, b)
        day_first = _valid_calendar_date(year, b, a)

        if self.locale.date_order == "MDY":
            return month_first
        if self.locale.date_order == "DMY":
            return day_first
        return month_first or day_first

    def _find_date(self, content: List[Tuple[int, str]]) -> Optional[str]:
        for _, line in content:
            found = self._date_in(line)
            if found:
                return found
        return None

    @staticmethod
    def _find_time(content: List[Tuple[int, str]]) -> Optional[str]:
        for _, line in content:
            match = TIME_RE.search(line)
            if match:
                return match.group(0)
        return None

    @staticmethod
    def _find_payment_method(content: List[Tuple[int, str]]) -> Optional[str]:
        for _, line in content:
            if CARD_BRAND_RE.search(line) or MASKED_CARD_RE.search(line):
                return line
        return None

    @staticmethod
    def _find_member_number(content: List[Tuple[int, str]]) -> Optional[str]:
        for _, line in content:
            match = MEMBER_RE.search(line)
            if match:
                return match.group("number")
        return None

    @staticmethod
    def _receipt_number_in(line: str) -> Optional[str]:
        # Labels alone ("RECEIPT TOTAL", "ORDER FRIES") are not identifiers
        for match in RECEIPT_NUMBER_RE.finditer(line):
            number = match.group("number")
            if _has_digit(number):
                return number
        return None

    def _find_receipt_number(self, content: List[Tuple[int, str]]) -> Optional[str]:
        for _, line in content:
            number = self._receipt_number_in(line)
            if number:
                return number
        return None

    @staticmethod
    def _find_currency(content: List[Tuple[int, str]]) -> Optional[str]:
        for _, line in content:
            match = CURRENCY_CODE_RE.search(line)
            if match:
                return match.group("code")

        for _, line in content:
            for ch in line:
                if ch in CURRENCY_SYMBOLS:
                    return CURRENCY_SYMBOLS[ch]
        return None


def parse_receipt_text(text: Optional[str], locale: Optional[ParserLocale] = None) -> ReceiptExtraction:
    """
    Convenience function to parse recognized receipt text.

    Args:
        text: Raw OCR text
        locale: Date order / decimal separator (defaults accept both date orders, '.' decimals)

    Returns:
        ReceiptExtraction

    Example:
        ```python
        extraction = parse_receipt_text("WALMART\\nBANANAS 4.99\\nTOTAL 4.99")
        assert extraction.total == Decimal("4.99")
        ```
    """
    return ReceiptTextParser(locale).parse(text)
