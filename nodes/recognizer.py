"""
Field Recognizer Node - Heuristic Contract Field Extraction

Turns the raw text of a purchase agreement into the nine OfferRecord fields.

Each field has an ordered list of named strategies. A strategy is a pure
function of the document's two views:
- lines: trimmed, non-blank lines in document order
- whole: the full text with all whitespace collapsed to single spaces

Strategies run in order and the first one that yields a value wins. Some
contracts put a label and its value on the same line, others on adjacent
lines, so the strategies mix both views.

Known limitations:
- Dates: the earliest date found becomes the acceptance date and the latest
  the closing date. An unrelated earlier date (listing date, offer date) is
  picked up as the acceptance date.
- Price: without a $ amount, any number above 1000 is accepted, so a
  four-digit year can be read as a price.
"""

import re
import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set

from state import OfferState, OFFER_FIELDS, MAX_FIELD_LENGTH

logger = logging.getLogger(__name__)


# ============================================================================
# Document Views
# ============================================================================

@dataclass(frozen=True)
class DocumentView:
    """Line-oriented and whole-text views of one document."""
    lines: Sequence[str]
    whole: str


def build_document_view(text: Optional[str]) -> DocumentView:
    """Split text into trimmed non-blank lines plus a whitespace-collapsed copy."""
    text = text or ""
    lines = tuple(line.strip() for line in re.split(r"\r?\n|\r", text) if line.strip())
    whole = re.sub(r"\s+", " ", text).strip()
    return DocumentView(lines=lines, whole=whole)


# ============================================================================
# Strategy Types
# ============================================================================

class RecognitionConfidence(Enum):
    """Confidence levels for recognized fields."""
    HIGH = "high"      # >= 0.85 - labeled or strongly shaped match
    MEDIUM = "medium"  # 0.65-0.84 - positional heuristic
    LOW = "low"        # < 0.65 - loose fallback, review it


HIGH_CONFIDENCE_THRESHOLD = 0.85
MEDIUM_CONFIDENCE_THRESHOLD = 0.65

StrategyFunc = Callable[[Sequence[str], str], Optional[str]]


@dataclass(frozen=True)
class FieldStrategy:
    """One self-contained heuristic rule for a single field."""
    name: str
    confidence: float
    func: StrategyFunc

    def apply(self, view: DocumentView) -> Optional[str]:
        value = self.func(view.lines, view.whole)
        if value is None:
            return None
        value = value.strip()[:MAX_FIELD_LENGTH].strip()
        return value or None


@dataclass
class RecognizedField:
    """A field value together with the strategy that produced it."""
    value: str
    strategy: str
    confidence: float

    def confidence_level(self) -> RecognitionConfidence:
        if self.confidence >= HIGH_CONFIDENCE_THRESHOLD:
            return RecognitionConfidence.HIGH
        elif self.confidence >= MEDIUM_CONFIDENCE_THRESHOLD:
            return RecognitionConfidence.MEDIUM
        return RecognitionConfidence.LOW

    def to_dict(self) -> Dict[str, object]:
        return {
            "value": self.value,
            "strategy": self.strategy,
            "confidence": self.confidence,
            "confidence_level": self.confidence_level().value,
        }


@dataclass
class RecognitionResult:
    """All recognized fields for one document, with provenance."""
    fields: Dict[str, RecognizedField] = field(default_factory=dict)

    def to_field_map(self) -> Dict[str, str]:
        """Every OfferRecord key, "" where nothing was recognized."""
        return {
            name: self.fields[name].value if name in self.fields else ""
            for name in OFFER_FIELDS
        }

    def needs_review(self) -> List[str]:
        """Fields that are missing or only matched by a low-confidence rule."""
        return [
            name for name in OFFER_FIELDS
            if name not in self.fields
            or self.fields[name].confidence_level() == RecognitionConfidence.LOW
        ]

    def to_dict(self) -> Dict[str, object]:
        return {
            "fields": {name: value.to_dict() for name, value in self.fields.items()},
            "needs_review": self.needs_review(),
        }


# ============================================================================
# Property Address
# ============================================================================

STREET_TYPES = (
    "St", "Street", "Ave", "Avenue", "Blvd", "Boulevard", "Rd", "Road",
    "Ln", "Lane", "Dr", "Drive", "Ct", "Court", "Way", "Terrace", "Place",
)

ADDRESS_PATTERN = re.compile(
    r"\b\d{1,5}\s+(?:[A-Za-z0-9.'\-]+\s+){1,6}?(?:" + "|".join(STREET_TYPES) + r")\b\.?",
    re.IGNORECASE,
)


def address_in_line(lines: Sequence[str], whole: str) -> Optional[str]:
    # From the street number to end of line, any label before it dropped
    for line in lines:
        match = ADDRESS_PATTERN.search(line)
        if match:
            return line[match.start():]
    return None


def address_in_whole_text(lines: Sequence[str], whole: str) -> Optional[str]:
    match = ADDRESS_PATTERN.search(whole)
    return match.group(0) if match else None


# ============================================================================
# Sale Price
# ============================================================================

# Anything at or below this is a fee, a count or a phone fragment, not a price
PRICE_MINIMUM = 1000

DOLLAR_AMOUNT_PATTERN = re.compile(r"\$\s?((?:\d{1,3}(?:,\d{3})+|\d+)(?:\.\d{2})?)(?!\d|,\d)")
PLAIN_AMOUNT_PATTERN = re.compile(r"\b(?<!,)((?:\d{1,3}(?:,\d{3})+|\d{4,})(?:\.\d{2})?)(?!,\d)\b")


def amount_value(amount: str) -> int:
    """Whole-dollar value of '350,000.00' -> 350000."""
    return int(amount.split(".")[0].replace(",", ""))


def canonical_price(amount: str) -> str:
    """'350,000' -> '$350,000'."""
    return "$" + amount.strip().lstrip("$").strip()


def _first_amount(lines: Sequence[str], pattern: "re.Pattern[str]") -> Optional[str]:
    for line in lines:
        for match in pattern.finditer(line):
            amount = match.group(1)
            if amount_value(amount) > PRICE_MINIMUM:
                return canonical_price(amount)
    return None


def dollar_amount(lines: Sequence[str], whole: str) -> Optional[str]:
    return _first_amount(lines, DOLLAR_AMOUNT_PATTERN)


def grouped_or_long_number(lines: Sequence[str], whole: str) -> Optional[str]:
    return _first_amount(lines, PLAIN_AMOUNT_PATTERN)


# ============================================================================
# Acceptance / Closing Dates
# ============================================================================

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

MONTH_NAME_DATE_PATTERN = re.compile(
    r"\b(Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|June?|July?|Aug(?:ust)?"
    r"|Sep(?:t(?:ember)?)?|Oct(?:ober)?|Nov(?:ember)?|Dec(?:ember)?)\.?"
    r"\s+(\d{1,2})(?:st|nd|rd|th)?,?\s+(\d{4})\b",
    re.IGNORECASE,
)

# MM/DD/YYYY, MM-DD-YY
NUMERIC_DATE_PATTERN = re.compile(r"\b(\d{1,2})[/-](\d{1,2})[/-](\d{4}|\d{2})\b")

# YYYY-MM-DD, YYYY/MM/DD
ISO_DATE_PATTERN = re.compile(r"\b(\d{4})[/-](\d{1,2})[/-](\d{1,2})\b")

DATE_LABEL_PATTERN = re.compile(r"\b(?:Acceptance|Closing)\s+Date\b", re.IGNORECASE)


def _expand_year(year: str) -> int:
    # Same pivot as strptime's %y: 69-99 -> 1900s, 00-68 -> 2000s
    value = int(year)
    if len(year) == 2:
        return value + (1900 if value >= 69 else 2000)
    return value


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_dates(text: str) -> List[date]:
    """Every calendar date in the text, in the three supported styles."""
    found: List[Optional[date]] = []
    for match in MONTH_NAME_DATE_PATTERN.finditer(text):
        month_name, day, year = match.groups()
        found.append(_safe_date(int(year), MONTHS[month_name[:3].lower()], int(day)))
    for match in NUMERIC_DATE_PATTERN.finditer(text):
        month, day, year = match.groups()
        found.append(_safe_date(_expand_year(year), int(month), int(day)))
    for match in ISO_DATE_PATTERN.finditer(text):
        year, month, day = match.groups()
        found.append(_safe_date(int(year), int(month), int(day)))
    return [value for value in found if value is not None]


def collect_contract_dates(lines: Sequence[str], whole: str) -> List[date]:
    """
    Distinct dates found anywhere in the document, sorted ascending.

    Scans every line, the line after an "Acceptance Date"/"Closing Date"
    label, and the whole text (which catches dates wrapped across lines).
    """
    found: Set[date] = set()
    for index, line in enumerate(lines):
        found.update(parse_dates(line))
        if DATE_LABEL_PATTERN.search(line) and index + 1 < len(lines):
            found.update(parse_dates(lines[index + 1]))
    found.update(parse_dates(whole))
    return sorted(found)


def earliest_date(lines: Sequence[str], whole: str) -> Optional[str]:
    dates = collect_contract_dates(lines, whole)
    return dates[0].isoformat() if dates else None


def latest_date(lines: Sequence[str], whole: str) -> Optional[str]:
    dates = collect_contract_dates(lines, whole)
    return dates[-1].isoformat() if len(dates) > 1 else None


# ============================================================================
# Day-Count Periods
# ============================================================================

PERIOD_KEYWORDS = {
    "inspection_period": r"inspections?",
    "appraisal_period": r"apprais(?:al|e)",
    "financing_deadline": r"financ(?:ing|e)|loans?",
}

# Longest stretch of non-digits allowed between keyword and number
PERIOD_WINDOW = 40

# A 1-3 digit number that is not part of a date, a price or a decimal
_DAY_COUNT = r"(?<![\d$/])(\d{1,3})(?![\d/]|[-.,]\d)"

NEXT_LINE_DAYS_PATTERN = re.compile(
    r"\b(\d{1,3})\s*(?:calendar\s+|business\s+)?days?\b", re.IGNORECASE
)
NEXT_LINE_NUMBER_PATTERN = re.compile(r"\s*(\d{1,3})\s*")


def _keyword_pattern(keyword: str) -> "re.Pattern[str]":
    return re.compile(rf"\b(?:{keyword})\b", re.IGNORECASE)


def _inline_pattern(keyword: str) -> "re.Pattern[str]":
    return re.compile(
        rf"\b(?:{keyword})\b[^\d\n]{{0,{PERIOD_WINDOW}}}?{_DAY_COUNT}", re.IGNORECASE
    )


def inline_day_count(keyword: str) -> StrategyFunc:
    """Keyword followed on the same line, within a short window, by a day count."""
    pattern = _inline_pattern(keyword)

    def strategy(lines: Sequence[str], whole: str) -> Optional[str]:
        for line in lines:
            match = pattern.search(line)
            if match:
                return str(int(match.group(1)))
        return None

    return strategy


def next_line_day_count(keyword: str) -> StrategyFunc:
    """Keyword on one line, 'N days' or a lone number on the line after it."""
    pattern = _keyword_pattern(keyword)

    def strategy(lines: Sequence[str], whole: str) -> Optional[str]:
        for index, line in enumerate(lines[:-1]):
            if pattern.search(line):
                following = lines[index + 1]
                match = (
                    NEXT_LINE_DAYS_PATTERN.search(following)
                    or NEXT_LINE_NUMBER_PATTERN.fullmatch(following)
                )
                if match:
                    return str(int(match.group(1)))
        return None

    return strategy


# ============================================================================
# Buyer / Seller Names
# ============================================================================

ROLE_KEYWORDS = {
    "buyer_name": r"buyer(?:s|\(s\))?",
    "seller_name": r"seller(?:s|\(s\))?",
}

# Capitalized word, allowing initials, hyphens and apostrophes (O'Brien, Mary-Jane, J.)
NAME_WORD = r"[A-Z][A-Za-z.'\-]*"

# Words that look capitalized in contracts but are labels, not names
NAME_EXCLUSIONS = {
    "buyer", "buyers", "seller", "sellers", "purchaser", "agent", "broker",
    "signature", "signatures", "sign", "signed", "print", "printed", "name",
    "names", "date", "dated", "initial", "initials", "the", "this", "that",
    "and", "or", "of", "by", "to", "in", "for", "with", "from", "is", "are",
    "has", "have", "shall", "will", "agrees", "agree", "hereby", "acknowledges",
    "represents", "warrants", "understands", "email", "e-mail", "phone", "fax",
    "address", "property", "purchase", "agreement", "contract", "price",
    "closing", "acceptance", "inspection", "appraisal", "financing", "loan",
    "title", "escrow", "deposit", "earnest", "money", "party", "parties",
    "information", "section", "page", "terms", "license", "company", "mls",
    "street", "city", "state", "zip", "county", "x",
}

MIN_NAME_LENGTH = 2


def _is_excluded(word: str) -> bool:
    cleaned = word.strip(".,:;'\"-()").lower()
    if cleaned.endswith("'s"):
        cleaned = cleaned[:-2]
    return cleaned in NAME_EXCLUSIONS


def clean_name_candidate(candidate: Optional[str]) -> Optional[str]:
    """
    Trim label words off a captured name.

    Leading label words are dropped ('Signature John Smith' -> 'John Smith')
    and the name ends at the first label word after it
    ('Robert Johnson Email' -> 'Robert Johnson').
    """
    if not candidate:
        return None
    words = candidate.replace(",", " ").split()
    while words and _is_excluded(words[0]):
        words.pop(0)

    kept: List[str] = []
    for word in words:
        if _is_excluded(word):
            break
        kept.append(word)

    name = " ".join(kept).strip(" .,-'")
    if len(name) < MIN_NAME_LENGTH or not name[0].isupper():
        return None
    return name[:MAX_FIELD_LENGTH]


def _first_clean(candidates: Iterable[str]) -> Optional[str]:
    for candidate in candidates:
        name = clean_name_candidate(candidate)
        if name:
            return name
    return None


def inline_label(role: str) -> StrategyFunc:
    """'Buyer: Jane Doe', 'Seller Name - John Roe', 'Buyer Jane Doe' on one line."""
    pattern = re.compile(
        rf"\b(?i:{role})(?:\s+(?i:names?))?(?:\s*[:\-]\s*|\s+)"
        rf"({NAME_WORD}(?:[ ]+{NAME_WORD}){{0,5}})"
    )

    def strategy(lines: Sequence[str], whole: str) -> Optional[str]:
        return _first_clean(
            match.group(1) for line in lines for match in pattern.finditer(line)
        )

    return strategy


def label_then_next_line(role: str) -> StrategyFunc:
    """A line that is only the label, with the name on the following line."""
    label = re.compile(
        rf"^(?:the\s+)?(?:{role})(?:'s)?(?:\s+(?:printed\s+)?(?:names?|signature))?\s*[:\-]?\s*$",
        re.IGNORECASE,
    )
    name_line = re.compile(rf"^{NAME_WORD}(?:[ ,]+{NAME_WORD})*$")

    def strategy(lines: Sequence[str], whole: str) -> Optional[str]:
        for index, line in enumerate(lines[:-1]):
            following = lines[index + 1]
            if label.match(line) and name_line.match(following):
                name = clean_name_candidate(following)
                if name:
                    return name
        return None

    return strategy


# Punctuation/underscore run allowed between keyword and name
KEYWORD_WINDOW = 60


def keyword_window(role: str) -> StrategyFunc:
    """Keyword, up to 60 chars of punctuation or blanks, then 1-4 capitalized words."""
    pattern = re.compile(
        rf"\b(?i:{role})\b[\s\-_.,:;]{{0,{KEYWORD_WINDOW}}}"
        rf"({NAME_WORD}(?:\s+{NAME_WORD}){{0,3}})"
    )

    def strategy(lines: Sequence[str], whole: str) -> Optional[str]:
        return _first_clean(match.group(1) for match in pattern.finditer(whole))

    return strategy


# Signature blocks sit at the end of the contract
SIGNATURE_TAIL_LINES = 40


def signature_block(role: str) -> StrategyFunc:
    """Near a buyer/seller signature label in the last lines, same line or the next."""
    keyword = re.compile(rf"\b(?:{role})(?:'s|’s)?\b", re.IGNORECASE)
    leading_name = re.compile(rf"{NAME_WORD}(?:\s+{NAME_WORD}){{0,3}}")

    def strategy(lines: Sequence[str], whole: str) -> Optional[str]:
        start = max(0, len(lines) - SIGNATURE_TAIL_LINES)
        for index in range(len(lines) - 1, start - 1, -1):
            match = keyword.search(lines[index])
            if not match:
                continue
            rest = lines[index][match.end():].lstrip(" \t:-_.")
            candidates = []
            same_line = leading_name.match(rest)
            if same_line:
                candidates.append(same_line.group(0))
            if index + 1 < len(lines):
                next_line = leading_name.match(lines[index + 1])
                if next_line:
                    candidates.append(next_line.group(0))
            name = _first_clean(candidates)
            if name:
                return name
        return None

    return strategy


# ============================================================================
# Strategy Registry
# ============================================================================

def _name_strategies(role: str) -> List[FieldStrategy]:
    return [
        FieldStrategy("inline_label", 0.9, inline_label(role)),
        FieldStrategy("label_then_next_line", 0.85, label_then_next_line(role)),
        FieldStrategy("keyword_window", 0.7, keyword_window(role)),
        FieldStrategy("signature_block", 0.6, signature_block(role)),
    ]


def _period_strategies(keyword: str) -> List[FieldStrategy]:
    return [
        FieldStrategy("inline_day_count", 0.85, inline_day_count(keyword)),
        FieldStrategy("next_line_day_count", 0.75, next_line_day_count(keyword)),
    ]


FIELD_STRATEGIES: Dict[str, List[FieldStrategy]] = {
    "acceptance_date": [FieldStrategy("earliest_date", 0.7, earliest_date)],
    "closing_date": [FieldStrategy("latest_date", 0.7, latest_date)],
    "inspection_period": _period_strategies(PERIOD_KEYWORDS["inspection_period"]),
    "appraisal_period": _period_strategies(PERIOD_KEYWORDS["appraisal_period"]),
    "financing_deadline": _period_strategies(PERIOD_KEYWORDS["financing_deadline"]),
    "property_address": [
        FieldStrategy("address_in_line", 0.85, address_in_line),
        FieldStrategy("address_in_whole_text", 0.7, address_in_whole_text),
    ],
    "buyer_name": _name_strategies(ROLE_KEYWORDS["buyer_name"]),
    "seller_name": _name_strategies(ROLE_KEYWORDS["seller_name"]),
    "sale_price": [
        FieldStrategy("dollar_amount", 0.9, dollar_amount),
        FieldStrategy("grouped_or_long_number", 0.55, grouped_or_long_number),
    ],
}


def run_cascade(strategies: Sequence[FieldStrategy], view: DocumentView) -> Optional[RecognizedField]:
    """Evaluate strategies in order; the first value wins."""
    for strategy in strategies:
        value = strategy.apply(view)
        if value:
            return RecognizedField(value=value, strategy=strategy.name, confidence=strategy.confidence)
    return None


# ============================================================================
# Entry Points
# ============================================================================

def recognize_fields_with_trace(text: Optional[str]) -> RecognitionResult:
    """Recognize every field and keep which strategy matched each one."""
    view = build_document_view(text)
    result = RecognitionResult()
    if not view.lines:
        return result

    for name in OFFER_FIELDS:
        recognized = run_cascade(FIELD_STRATEGIES[name], view)
        if recognized:
            result.fields[name] = recognized
            logger.debug(f"{name} = {recognized.value!r} via {recognized.strategy}")
    return result


def recognize_fields(text: Optional[str]) -> Dict[str, str]:
    """
    Recognize contract fields in extracted text.

    Args:
        text: Extracted document text (None is treated as empty)

    Returns:
        Every OfferRecord key, "" for fields nothing matched
    """
    return recognize_fields_with_trace(text).to_field_map()


# ============================================================================
# Main Node Function
# ============================================================================

def field_recognizer_node(state: OfferState) -> dict:
    """
    Node B: Field Recognizer

    Runs every field cascade over the acquired text.
    """
    print("--- NODE: Field Recognizer ---")

    result = recognize_fields_with_trace(state.get("extracted_text", ""))
    fields = result.to_field_map()

    print(f"   Recognized {len(result.fields)}/{len(OFFER_FIELDS)} fields")
    for name, recognized in result.fields.items():
        print(f"   {name}: {recognized.value} ({recognized.strategy})")
    if result.needs_review():
        logger.info(f"Fields needing review: {', '.join(result.needs_review())}")

    return {"recognized_fields": fields}
