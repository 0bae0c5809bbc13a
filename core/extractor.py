"""
Result extraction for the claim-search results page.

The results DOM varies between renders (tables with or without ``headers``
attributes, hidden header rows, card layouts), so extraction is a cascade of
strategies run over one captured snapshot of the page:

1. StructuredTableStrategy - column roles from headers/labels/position
2. EnhancedTableStrategy   - looser business-name scan (1-9 rows found)
3. AggressiveTableStrategy - page claims more results than were found
4. GenericDomStrategy      - text blocks holding a dollar amount (nothing found)
5. LineContextStrategy     - dollar amounts in body text lines (nothing found)
"""

import html
import re
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from playwright.async_api import Page

from .amounts import AMOUNT_NOT_SPECIFIED, find_amount
from .models import ExtractedRecord, SearchRequest

logger = logging.getLogger(__name__)

SNAPSHOT_JS = """
() => {
    const textOf = el => ((el && (el.innerText || el.textContent)) || '').trim();
    const tables = Array.from(document.querySelectorAll('table')).map(table => {
        const tbody = table.querySelector('tbody');
        const allRows = Array.from(table.querySelectorAll('tr'));
        const dataRows = tbody ? Array.from(tbody.querySelectorAll('tr')) : allRows.slice(1);
        const headRow = table.querySelector('thead tr') || (tbody ? null : allRows[0]);
        return {
            headerCells: headRow ? Array.from(headRow.querySelectorAll('th, td')).map(textOf) : [],
            rows: dataRows.map(row => ({
                text: textOf(row).substring(0, 1000),
                cells: Array.from(row.querySelectorAll('td, th')).map(cell => ({
                    text: textOf(cell),
                    headers: cell.getAttribute('headers') || ''
                }))
            }))
        };
    });
    const blocks = [];
    for (const el of document.querySelectorAll('div, span, p, td, li')) {
        const text = textOf(el);
        if (text.length > 10 && text.length < 1000 && /\\$[\\d,]+/.test(text)) {
            blocks.push(text);
            if (blocks.length >= 200) break;
        }
    }
    return {
        url: window.location.href,
        title: document.title,
        bodyText: document.body ? document.body.innerText.substring(0, 200000) : '',
        tables: tables,
        blocks: blocks
    };
}
"""

ACTION_SUFFIX = re.compile(r"\s*:?\s*\b(CLAIM|VIEW|SELECT|INFO|REMOVE|SHARE)\s*$", re.IGNORECASE)
HOLDER_HEADERS = ("propholderName", "holderName", "holder")
OWNER_HEADERS = ("propownerName", "ownerName", "owner")
AMOUNT_HEADERS = ("proppropertyValueDescription", "amount", "value")

BUSINESS_KEYWORDS = re.compile(
    r"\b(LLC|INC|CORP|BANK|CO|COMPANY|CORPORATION|ASSOCIATES|GROUP|ENTERPRISES|SERVICES|SYSTEMS|SOLUTIONS)\b",
    re.IGNORECASE,
)
NOT_AN_ENTITY = [
    re.compile(r"^(claim|select|view|info|undisclosed|remove|share)$", re.IGNORECASE),
    re.compile(r"^\$[\d,]+\.?\d*$"),
    re.compile(r"^(over|under|to|\$25|\$50|\$100)$", re.IGNORECASE),
    re.compile(r"^[A-Z]{2}$"),
    re.compile(r"^\d{5}(-\d{4})?$"),
    re.compile(r"^[A-Z]{2}\s+\d{5}$"),
    re.compile(r"^[\d\s\-.,/#]+$"),
]
LABEL_WORDS = re.compile(r"^(amount|property|entity|holder|state|city|date|id|view|claim|search)$", re.IGNORECASE)

BLOCK_SKIP_PATTERNS = [
    "search", "menu", "nav", "header", "footer", "instruction", "privacy", "cookie", "home",
    "to begin your search", "exact name matches", "when you are ready", 'select "view claimed"',
]
LINE_SKIP_WORDS = ["search", "menu", "home", "claim", "instruction", "privacy"]

COUNT_HINTS = [
    re.compile(r"returned\s+(\d+)\s+unclaimed", re.IGNORECASE),
    re.compile(r"(\d+)\s+unclaimed\s+propert", re.IGNORECASE),
]
SIMPLE_AMOUNT = re.compile(r"\$[\d,]+\.?\d*")


# ============== Snapshot ==============

@dataclass
class CellSnapshot:
    text: str
    headers: str = ""


@dataclass
class RowSnapshot:
    cells: List[CellSnapshot]
    text: str = ""

    @property
    def cell_texts(self) -> List[str]:
        return [c.text for c in self.cells]

    def is_header(self) -> bool:
        lowered = self.text.lower()
        return "select" in lowered and "action" in lowered and "owner" in lowered

    def has_amount(self) -> bool:
        lowered = self.text.lower()
        return "$" in lowered or bool(re.search(r"over\s+\$[\d,]+", lowered)) or "undisclosed" in lowered


@dataclass
class TableSnapshot:
    rows: List[RowSnapshot]
    header_cells: List[str] = field(default_factory=list)


@dataclass
class PageSnapshot:
    """Everything the strategies read from the page, captured in one query."""
    url: str = ""
    title: str = ""
    body_text: str = ""
    tables: List[TableSnapshot] = field(default_factory=list)
    blocks: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PageSnapshot":
        data = data or {}
        tables = []
        for table in data.get("tables") or []:
            rows = []
            for row in table.get("rows") or []:
                cells = [CellSnapshot(c.get("text") or "", c.get("headers") or "") for c in row.get("cells") or []]
                text = row.get("text") or "\t".join(c.text for c in cells)
                rows.append(RowSnapshot(cells=cells, text=text))
            tables.append(TableSnapshot(rows=rows, header_cells=list(table.get("headerCells") or [])))
        return cls(
            url=data.get("url") or "",
            title=data.get("title") or "",
            body_text=data.get("bodyText") or "",
            tables=tables,
            blocks=list(data.get("blocks") or []),
        )

    @property
    def result_count_hint(self) -> Optional[int]:
        """Number of results the page text claims, if it says."""
        for pattern in COUNT_HINTS:
            match = pattern.search(self.body_text)
            if match:
                return int(match.group(1))
        return None

    @property
    def explicit_no_results(self) -> bool:
        text = self.body_text.lower()
        says_none = (
            "no unclaimed funds found" in text
            or "no match" in text
            or ("no results" in text and "to begin your search" not in text)
        )
        return says_none and not SIMPLE_AMOUNT.search(self.body_text)


@dataclass
class ExtractionContext:
    """Search-specific data the strategies need."""
    owner_names: List[str] = field(default_factory=list)

    @classmethod
    def for_request(cls, request: SearchRequest) -> "ExtractionContext":
        return cls(owner_names=request.owner_names)

    def is_owner(self, text: str) -> bool:
        normalized = re.sub(r"\s+", " ", text).strip().upper()
        return normalized in self.owner_names


# ============== Helpers ==============

def clean_entity(text: str) -> str:
    entity = html.unescape(text or "")
    entity = re.sub(r"\s+", " ", entity).strip()
    entity = ACTION_SUFFIX.sub("", entity).strip()
    return entity[:200]


def looks_like_entity(text: str) -> bool:
    if not text or len(text) < 3 or len(text) >= 200:
        return False
    return not any(p.search(text) for p in NOT_AN_ENTITY)


def amount_from_cell(text: str) -> Optional[str]:
    """Amount written in a single cell, or None if the cell holds something else."""
    value = re.sub(r"\s+", " ", (text or "")).strip().upper()
    if value == "UNDISCLOSED":
        return "$100"
    found = find_amount(value) if "$" in value else None
    return re.sub(r"\s+", " ", found).upper() if found and "$" in found else None


def amount_from_row(text: str) -> Optional[str]:
    if "UNDISCLOSED" in (text or "").upper() and not SIMPLE_AMOUNT.search(text or ""):
        return "$100"
    found = find_amount(text)
    if not found:
        return None
    return re.sub(r"\s+", " ", found).strip().upper()


def _has_header(cell: CellSnapshot, names: Tuple[str, ...]) -> bool:
    return any(name in cell.headers for name in names)


class ExtractionStrategy:
    """One pass of the cascade."""

    name = "base"

    def applies(self, found: int, snapshot: PageSnapshot) -> bool:
        return True

    def extract(self, snapshot: PageSnapshot, context: ExtractionContext) -> List[ExtractedRecord]:
        raise NotImplementedError


# ============== Strategies ==============

class StructuredTableStrategy(ExtractionStrategy):
    """Reads the reporting-business and amount columns of result tables."""

    name = "structured_table"

    @staticmethod
    def infer_columns(table: TableSnapshot) -> Tuple[int, int, int]:
        """Return (entity, owner, amount) column indices, -1 where unknown."""
        entity_idx = owner_idx = amount_idx = -1
        first_row = table.rows[0].cells if table.rows else []

        for idx, cell in enumerate(first_row):
            if _has_header(cell, HOLDER_HEADERS):
                entity_idx = idx
            elif _has_header(cell, OWNER_HEADERS):
                owner_idx = idx
            elif _has_header(cell, AMOUNT_HEADERS):
                amount_idx = idx

        for idx, label in enumerate(table.header_cells):
            label = label.lower()
            if entity_idx == -1 and ("reporting business" in label or "business name" in label or "holder" in label):
                entity_idx = idx
            elif owner_idx == -1 and ("owner" in label and "co-owner" not in label):
                owner_idx = idx
            elif amount_idx == -1 and ("amount" in label or "value" in label):
                amount_idx = idx

        if entity_idx == -1 and len(first_row) > 3:
            entity_idx = 3
        if amount_idx == -1 and first_row:
            amount_idx = len(first_row) - 1
        return entity_idx, owner_idx, amount_idx

    def extract(self, snapshot: PageSnapshot, context: ExtractionContext) -> List[ExtractedRecord]:
        records = []
        for table in snapshot.tables:
            if not table.rows:
                continue
            entity_idx, _, amount_idx = self.infer_columns(table)

            for row in table.rows:
                cells = row.cells
                if len(cells) < 2 or row.is_header() or not row.has_amount():
                    continue

                entity = ""
                if 0 <= entity_idx < len(cells):
                    entity = cells[entity_idx].text.strip()
                if len(entity) < 2:
                    entity = next((c.text.strip() for c in cells if _has_header(c, HOLDER_HEADERS)), "")
                entity = clean_entity(entity)
                if len(entity) < 3 or context.is_owner(entity):
                    continue

                amount = None
                if 0 <= amount_idx < len(cells):
                    amount = amount_from_cell(cells[amount_idx].text)
                if not amount:
                    for cell in cells:
                        if _has_header(cell, AMOUNT_HEADERS[:2]):
                            amount = amount_from_cell(cell.text)
                            if amount:
                                break
                if not amount:
                    amount = amount_from_row(row.text)
                if not amount:
                    continue

                records.append(ExtractedRecord(entity=entity, amount=amount, raw_context=row.text[:500]))
        return records


class EnhancedTableStrategy(ExtractionStrategy):
    """Picks business-like cells when the structured pass found only a few rows."""

    name = "enhanced_table"

    def applies(self, found: int, snapshot: PageSnapshot) -> bool:
        return 0 < found < 10

    @staticmethod
    def is_business_name(text: str) -> bool:
        if len(text) <= 5 or not looks_like_entity(text):
            return False
        return bool(BUSINESS_KEYWORDS.search(text)) or (" " in text and len(text) > 15)

    def extract(self, snapshot: PageSnapshot, context: ExtractionContext) -> List[ExtractedRecord]:
        records = []
        for table in snapshot.tables:
            for row in table.rows:
                if len(row.cells) < 3 or row.is_header() or not row.has_amount():
                    continue
                entity = next(
                    (t.strip() for t in row.cell_texts
                     if self.is_business_name(t.strip()) and not context.is_owner(t)),
                    "",
                )
                amount = amount_from_row(row.text)
                if entity and amount:
                    records.append(ExtractedRecord(entity=clean_entity(entity), amount=amount, raw_context=row.text[:500]))
        return records


class AggressiveTableStrategy(ExtractionStrategy):
    """Takes every amount row when the page reports more results than were found."""

    name = "aggressive_table"

    def applies(self, found: int, snapshot: PageSnapshot) -> bool:
        hint = snapshot.result_count_hint
        return hint is not None and hint > found

    def extract(self, snapshot: PageSnapshot, context: ExtractionContext) -> List[ExtractedRecord]:
        records = []
        for table in snapshot.tables:
            entity_idx, _, _ = StructuredTableStrategy.infer_columns(table)
            for row in table.rows:
                cells = row.cells
                if len(cells) < 3 or row.is_header() or not row.has_amount():
                    continue
                amount = amount_from_row(row.text)
                if not amount:
                    continue

                entity = next(
                    (c.text.strip() for c in cells
                     if _has_header(c, HOLDER_HEADERS) and looks_like_entity(c.text.strip())),
                    "",
                )
                if not entity and 0 <= entity_idx < len(cells) and looks_like_entity(cells[entity_idx].text.strip()):
                    entity = cells[entity_idx].text.strip()
                if not entity or context.is_owner(entity):
                    entity = next(
                        (t.strip() for t in row.cell_texts
                         if looks_like_entity(t.strip()) and not context.is_owner(t)),
                        "",
                    )
                if entity:
                    records.append(ExtractedRecord(entity=clean_entity(entity), amount=amount, raw_context=row.text[:500]))
        return records


class GenericDomStrategy(ExtractionStrategy):
    """Reads text blocks that contain a dollar amount."""

    name = "generic_dom"

    def applies(self, found: int, snapshot: PageSnapshot) -> bool:
        return found == 0

    def extract(self, snapshot: PageSnapshot, context: ExtractionContext) -> List[ExtractedRecord]:
        records = []
        for text in snapshot.blocks[:50]:
            lowered = text.lower()
            if any(pattern in lowered for pattern in BLOCK_SKIP_PATTERNS):
                continue
            match = SIMPLE_AMOUNT.search(text)
            if not match:
                continue

            before = text[:match.start()].strip()
            lines = [l.strip() for l in before.split("\n") if len(l.strip()) > 2]
            entity = ""
            if lines:
                entity = lines[-1]
                if (len(entity) < 3 or LABEL_WORDS.match(entity)) and len(lines) > 1:
                    entity = lines[-2]
            if len(entity) < 2:
                words = [w for w in before.split() if len(w) > 1 and not re.match(r"^[A-Z]{2}$", w) and not w.isdigit()]
                entity = " ".join(words[-3:])

            if len(entity) > 2 and not LABEL_WORDS.match(entity) and not context.is_owner(entity):
                records.append(ExtractedRecord(entity=clean_entity(entity), amount=match.group(0), raw_context=text[:500]))
        return records


class LineContextStrategy(ExtractionStrategy):
    """Pairs each dollar amount in the body text with the nearest line above it."""

    name = "line_context"

    def applies(self, found: int, snapshot: PageSnapshot) -> bool:
        return found == 0

    def extract(self, snapshot: PageSnapshot, context: ExtractionContext) -> List[ExtractedRecord]:
        records = []
        lines = snapshot.body_text.split("\n")
        for idx, line in enumerate(lines):
            lowered = line.lower()
            if any(word in lowered for word in LINE_SKIP_WORDS):
                continue
            for match in SIMPLE_AMOUNT.finditer(line):
                entity = "Unknown Entity"
                prefix = line[:match.start()].strip()
                if looks_like_entity(prefix) and not context.is_owner(prefix):
                    entity = prefix
                else:
                    for back in range(idx - 1, max(-1, idx - 4), -1):
                        candidate = lines[back].strip()
                        if (2 < len(candidate) < 100 and not SIMPLE_AMOUNT.fullmatch(candidate)
                                and not context.is_owner(candidate)):
                            entity = candidate
                            break
                surrounding = " ".join(l.strip() for l in lines[max(0, idx - 2):idx + 3])
                records.append(ExtractedRecord(entity=clean_entity(entity), amount=match.group(0), raw_context=surrounding[:500]))
        return records


# ============== Extractor ==============

@dataclass
class ExtractionResult:
    """Records plus what the page said about them."""
    records: List[ExtractedRecord] = field(default_factory=list)
    raw_count: int = 0
    result_count_hint: Optional[int] = None
    explicit_no_results: bool = False
    fallback_used: bool = False
    passes: Dict[str, int] = field(default_factory=dict)


def dedupe(records: List[ExtractedRecord]) -> List[ExtractedRecord]:
    seen = set()
    unique = []
    for record in records:
        key = record.key()
        if key in seen:
            continue
        seen.add(key)
        unique.append(record)
    return unique


def clean_record(record: ExtractedRecord) -> Optional[ExtractedRecord]:
    """Final cleanup: tidy the entity and make sure the amount is an amount."""
    entity = clean_entity(record.entity)
    if not entity:
        return None

    amount = re.sub(r"\s+", " ", record.amount or "").strip()
    if amount.upper() == "UNDISCLOSED":
        amount = "$100"
    elif "$" not in amount:
        amount = amount_from_row(record.raw_context) or AMOUNT_NOT_SPECIFIED
    return ExtractedRecord(entity=entity, amount=amount, raw_context=record.raw_context)


class ResultExtractor:
    """
    Runs the strategy cascade over a page snapshot.

    Usage:
        extractor = ResultExtractor()
        result = await extractor.extract(page, ExtractionContext.for_request(request))
    """

    def __init__(self, strategies: Optional[List[ExtractionStrategy]] = None):
        self.strategies = strategies or [
            StructuredTableStrategy(),
            EnhancedTableStrategy(),
            AggressiveTableStrategy(),
            GenericDomStrategy(),
            LineContextStrategy(),
        ]

    async def capture(self, page: Page) -> PageSnapshot:
        return PageSnapshot.from_dict(await page.evaluate(SNAPSHOT_JS))

    async def extract(self, page: Page, context: ExtractionContext) -> ExtractionResult:
        snapshot = await self.capture(page)
        return self.extract_snapshot(snapshot, context)

    def extract_snapshot(self, snapshot: PageSnapshot, context: ExtractionContext) -> ExtractionResult:
        raw: List[ExtractedRecord] = []
        passes = {}
        for strategy in self.strategies:
            found = len(dedupe(raw))
            if not strategy.applies(found, snapshot):
                continue
            records = strategy.extract(snapshot, context)
            passes[strategy.name] = len(records)
            logger.info(f"[Extract] {strategy.name} found {len(records)} candidates")
            raw.extend(records)

        raw = dedupe(raw)
        cleaned = dedupe([r for r in (clean_record(r) for r in raw) if r])
        fallback_used = False
        if not cleaned and raw:
            logger.warning("[Extract] Cleanup removed every candidate, returning raw candidates")
            fallback_used = True
            cleaned = [
                ExtractedRecord(
                    entity=ACTION_SUFFIX.sub("", r.entity.strip()).strip() or "Unclaimed Property",
                    amount=r.amount,
                    raw_context=r.raw_context,
                )
                for r in raw
            ]

        result = ExtractionResult(
            records=cleaned,
            raw_count=len(raw),
            result_count_hint=snapshot.result_count_hint,
            explicit_no_results=snapshot.explicit_no_results,
            fallback_used=fallback_used,
            passes=passes,
        )
        logger.info(
            f"[Extract] {len(cleaned)} records (raw {len(raw)}, hint {result.result_count_hint}, "
            f"no-results text {result.explicit_no_results})"
        )
        return result
