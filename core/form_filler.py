"""
Claim Search Form Filling

Fills the missingmoney.com search form (last name, first name, city, state)
with human-paced input. Each field has a cascade of selectors from most to
least specific; when the name fields cannot be found by selector, the first
two visible text inputs are used instead.
"""

import asyncio
import random
import logging
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Any
from playwright.async_api import Page

from .models import SearchRequest

logger = logging.getLogger(__name__)

# Inputs whose name/id contains one of these belong to the challenge widget or a consent tool.
WIDGET_NAME_MARKERS = ("turnstile", "cf-", "vendor", "host")

ELEMENT_NAME_JS = "el => el.name || el.id || ''"
ELEMENT_TAG_JS = "el => el.tagName.toLowerCase()"
ELEMENT_TYPE_JS = "el => el.type || ''"
FORCE_VALUE_JS = """
(el, value) => {
    el.value = value;
    el.dispatchEvent(new Event('input', { bubbles: true }));
    el.dispatchEvent(new Event('change', { bubbles: true }));
}
"""
SELECT_OPTIONS_JS = "el => Array.from(el.options).map(o => ({ value: o.value, text: o.text.trim() }))"


def choose_option(options: List[Dict[str, str]], value: str) -> Optional[tuple]:
    """
    Pick the option for ``value``: exact label, then exact value, then a
    case-insensitive partial text match. Returns (method, option value).
    """
    for option in options:
        if option.get("text") == value:
            return "label", option.get("value", "")
    for option in options:
        if option.get("value") == value:
            return "value", option["value"]
    wanted = value.lower()
    for option in options:
        text = (option.get("text") or "").lower()
        if text and (text == wanted or wanted in text or text in wanted):
            return "option-text", option.get("value", "")
    return None


@dataclass
class FieldMapping:
    """Maps a search field to form selectors."""
    field_name: str
    selectors: List[str]
    field_type: str = "text"  # text or select


@dataclass
class FilledField:
    """Record of a filled field."""
    field_name: str
    value: str
    success: bool
    selector: Optional[str] = None
    method: Optional[str] = None
    error: Optional[str] = None


@dataclass
class FillResult:
    """Result of form filling operation."""
    filled: List[FilledField] = field(default_factory=list)
    positional_fallback: bool = False
    checkboxes_ticked: int = 0

    @property
    def filled_count(self) -> int:
        return sum(1 for f in self.filled if f.success)

    def succeeded(self, field_name: str) -> bool:
        return any(f.success for f in self.filled if f.field_name == field_name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filled": {f.field_name: f.success for f in self.filled},
            "positional_fallback": self.positional_fallback,
            "checkboxes_ticked": self.checkboxes_ticked,
        }


class FormFiller:
    """
    Human-paced filler for the claim search form.

    Usage:
        filler = FormFiller()
        result = await filler.fill_search_form(page, request)
        if not result.succeeded("last_name"):
            ...
    """

    SEARCH_MAPPINGS = {
        'last_name': FieldMapping(
            field_name='last_name',
            selectors=[
                'input[name*="lastName" i]',
                'input[id*="lastName" i]',
                'input[name*="last" i]',
                'input[id*="last" i]',
                'input[placeholder*="Last" i]',
                'input[type="text"]:nth-of-type(1)',
            ],
        ),
        'first_name': FieldMapping(
            field_name='first_name',
            selectors=[
                'input[name*="firstName" i]',
                'input[id*="firstName" i]',
                'input[name*="first" i]',
                'input[id*="first" i]',
                'input[placeholder*="First" i]',
                'input[placeholder*="name" i]',
                'input[type="text"]:nth-of-type(2)',
            ],
        ),
        'city': FieldMapping(
            field_name='city',
            selectors=[
                'input[name*="city" i]',
                'input[id*="city" i]',
                'input[placeholder*="City" i]',
                'input[type="text"]:nth-of-type(3)',
            ],
        ),
        'state': FieldMapping(
            field_name='state',
            selectors=[
                'select[name*="state" i]',
                'select[id*="state" i]',
                'select',
            ],
            field_type='select',
        ),
    }

    def __init__(self, typing_delay_ms: int = 50, pace: float = 1.0, sleep=asyncio.sleep):
        """
        Args:
            typing_delay_ms: Delay between keystrokes.
            pace: Multiplier on the random pauses between actions (0 disables them).
            sleep: Coroutine used for pauses.
        """
        self.typing_delay_ms = typing_delay_ms
        self.pace = pace
        self._sleep = sleep

    async def _pause(self, min_ms: int, max_ms: int):
        if self.pace <= 0:
            return
        await self._sleep(random.uniform(min_ms, max_ms) / 1000 * self.pace)

    async def fill_search_form(self, page: Page, request: SearchRequest) -> FillResult:
        """
        Fill every search field, falling back to positional inputs for names.

        Args:
            page: Playwright page showing the search form
            request: Normalized search request

        Returns:
            FillResult with details of what was filled
        """
        result = FillResult()
        values = {
            'last_name': request.last_name,
            'first_name': request.first_name,
            'city': request.city,
            'state': request.state_name,
        }

        for name, mapping in self.SEARCH_MAPPINGS.items():
            result.filled.append(await self._fill_field(page, mapping, values[name]))

        if not result.succeeded('last_name') or not result.succeeded('first_name'):
            logger.info("[Form] Name fields not found by selector, filling inputs by position")
            result.positional_fallback = True
            result.filled.extend(await self._fill_by_position(page, request.last_name, request.first_name))

        result.checkboxes_ticked = await self._tick_checkboxes(page)
        logger.info(f"[Form] Filled {result.filled_count} fields ({result.to_dict()})")
        return result

    async def _fill_field(self, page: Page, mapping: FieldMapping, value: str) -> FilledField:
        """Try each selector in turn until one fills."""
        if not value or not value.strip():
            logger.debug(f"[Form] Skipping {mapping.field_name}: empty value")
            return FilledField(mapping.field_name, "", success=True, method="skipped")

        last_error = None
        for selector in mapping.selectors:
            try:
                element = await page.query_selector(selector)
                if not element:
                    continue
                if not await element.is_visible() or not await element.is_enabled():
                    logger.debug(f"[Form] {mapping.field_name}: {selector} not visible or enabled")
                    continue
                method = await self._fill_element(page, element, value)
                logger.info(f"[Form] Filled {mapping.field_name} via {selector} ({method})")
                return FilledField(mapping.field_name, value, success=True, selector=selector, method=method)
            except Exception as e:
                last_error = str(e)
                logger.debug(f"[Form] {mapping.field_name}: {selector} failed: {e}")
                continue

        logger.warning(f"[Form] Could not fill {mapping.field_name}")
        return FilledField(mapping.field_name, value, success=False, error=last_error or "no matching element")

    async def _fill_element(self, page: Page, element, value: str) -> str:
        await element.scroll_into_view_if_needed()
        await self._pause(300, 500)

        box = await element.bounding_box()
        if box:
            await page.mouse.move(box["x"] + box["width"] / 2, box["y"] + box["height"] / 2)
            await self._pause(200, 400)

        tag = await element.evaluate(ELEMENT_TAG_JS)
        if tag == "select":
            method = await self._select_option(element, value)
        else:
            method = await self._type_text(page, element, value)
        await self._pause(400, 600)
        return method

    async def _select_option(self, element, value: str) -> str:
        """Select by label, then by value, then by partial option text."""
        await element.click()
        await self._pause(500, 800)

        options = await element.evaluate(SELECT_OPTIONS_JS) or []
        match = choose_option(options, value)
        if not match:
            raise ValueError(f"no option matching {value!r}")
        method, option_value = match
        await element.select_option(value=option_value)
        return method

    async def _type_text(self, page: Page, element, value: str) -> str:
        """Focus, clear, type, then make sure the value stuck."""
        await element.focus()
        await self._pause(200, 300)
        await page.keyboard.press("Control+A")
        await self._pause(50, 100)
        await page.keyboard.press("Delete")
        await self._pause(50, 100)

        await element.type(value, delay=self.typing_delay_ms)
        await element.fill(value)
        for event in ("input", "change", "blur"):
            await element.dispatch_event(event)

        await self._pause(100, 200)
        if await element.input_value():
            return "typed"

        await element.evaluate(FORCE_VALUE_JS, value)
        return "forced"

    async def _is_candidate_input(self, element) -> bool:
        try:
            if not await element.is_visible():
                return False
            if (await element.evaluate(ELEMENT_TYPE_JS)) == "hidden":
                return False
            name = await element.evaluate(ELEMENT_NAME_JS)
        except Exception:
            return False
        return not any(marker in name for marker in WIDGET_NAME_MARKERS)

    async def _fill_by_position(self, page: Page, last_name: str, first_name: str) -> List[FilledField]:
        """Fill the first two visible, non-widget inputs with last then first name."""
        candidates = []
        for element in await page.query_selector_all("input, select"):
            if await self._is_candidate_input(element):
                candidates.append(element)

        if len(candidates) < 2:
            logger.warning(f"[Form] Only {len(candidates)} visible inputs, positional fill skipped")
            return []

        filled = []
        for element, (name, value) in zip(candidates[:2], [("last_name", last_name), ("first_name", first_name)]):
            try:
                method = await self._fill_element(page, element, value)
                filled.append(FilledField(name, value, success=True, method=f"positional-{method}"))
            except Exception as e:
                logger.warning(f"[Form] Positional fill of {name} failed: {e}")
                filled.append(FilledField(name, value, success=False, error=str(e)))
        return filled

    async def _tick_checkboxes(self, page: Page) -> int:
        """Tick visible unchecked consent checkboxes that do not belong to the widget."""
        ticked = 0
        for checkbox in await page.query_selector_all('input[type="checkbox"]'):
            try:
                if not await checkbox.is_visible() or await checkbox.is_checked():
                    continue
                name = await checkbox.evaluate(ELEMENT_NAME_JS)
                if any(marker in name for marker in WIDGET_NAME_MARKERS):
                    continue
                await checkbox.scroll_into_view_if_needed()
                await self._pause(200, 400)
                await checkbox.click()
                ticked += 1
                await self._pause(300, 600)
            except Exception as e:
                logger.debug(f"[Form] Checkbox skipped: {e}")
        return ticked
