"""
Claim search form filling.
"""

import pytest

from core.form_filler import FormFiller, choose_option

from fakes import FakeElement, FakePage, search_form_page

STATE_OPTIONS = [
    {"value": "", "text": "Select a state"},
    {"value": "TX", "text": "Texas"},
    {"value": "NY", "text": "New York"},
]


class TestChooseOption:

    def test_label_first(self):
        assert choose_option(STATE_OPTIONS, "Texas") == ("label", "TX")

    def test_value(self):
        assert choose_option(STATE_OPTIONS, "NY") == ("value", "NY")

    def test_partial_text(self):
        assert choose_option(STATE_OPTIONS, "new york state") == ("option-text", "NY")

    def test_no_match(self):
        assert choose_option(STATE_OPTIONS, "Ontario") is None


class TestFillSearchForm:

    @pytest.mark.asyncio
    async def test_fills_all_fields_by_selector(self, form_page, search_request):
        result = await FormFiller(pace=0).fill_search_form(form_page, search_request)

        assert result.filled_count == 4
        assert not result.positional_fallback
        assert form_page.selectors['input[name*="lastName" i]'].value == "Smith"
        assert form_page.selectors['input[name*="firstName" i]'].value == "Benjamin"
        assert form_page.selectors['input[name*="city" i]'].value == "Austin"
        assert form_page.selectors['select[name*="state" i]'].selected == "TX"

    @pytest.mark.asyncio
    async def test_typing_events_dispatched(self, form_page, search_request):
        await FormFiller(pace=0).fill_search_form(form_page, search_request)
        city = form_page.selectors['input[name*="city" i]']
        assert city.typed == ["Austin"]
        assert city.events == ["input", "change", "blur"]

    @pytest.mark.asyncio
    async def test_value_forced_when_typing_does_not_stick(self, search_request):
        page = search_form_page()
        city = FakeElement(name="city", sticky=False)
        page.selectors['input[name*="city" i]'] = city

        result = await FormFiller(pace=0).fill_search_form(page, search_request)

        assert city.forced
        assert city.value == "Austin"
        assert [f.method for f in result.filled if f.field_name == "city"] == ["forced"]

    @pytest.mark.asyncio
    async def test_positional_fallback_skips_widget_inputs(self, search_request):
        page = FakePage()
        widget = FakeElement(name="cf-turnstile-response")
        hidden = FakeElement(input_type="hidden", name="token")
        first = FakeElement(name="q1")
        second = FakeElement(name="q2")
        page.selector_lists["input, select"] = [widget, hidden, first, second]

        result = await FormFiller(pace=0).fill_search_form(page, search_request)

        assert result.positional_fallback
        assert first.value == "Smith"
        assert second.value == "Benjamin"
        assert widget.value == ""
        assert result.succeeded("last_name") and result.succeeded("first_name")

    @pytest.mark.asyncio
    async def test_consent_checkboxes_ticked(self, form_page, search_request):
        consent = FakeElement(input_type="checkbox", name="agree")
        widget_box = FakeElement(input_type="checkbox", name="cf-chl-widget")
        done = FakeElement(input_type="checkbox", name="done", checked=True)
        form_page.selector_lists['input[type="checkbox"]'] = [consent, widget_box, done]

        result = await FormFiller(pace=0).fill_search_form(form_page, search_request)

        assert result.checkboxes_ticked == 1
        assert consent.checked
        assert widget_box.clicks == 0
        assert done.clicks == 0

    @pytest.mark.asyncio
    async def test_disabled_field_reported_as_failed(self, search_request):
        page = search_form_page()
        page.selectors['input[name*="city" i]'] = FakeElement(name="city", enabled=False)

        result = await FormFiller(pace=0).fill_search_form(page, search_request)

        assert not result.succeeded("city")
        assert result.succeeded("last_name")

    @pytest.mark.asyncio
    async def test_pauses_scale_with_pace(self, form_page, search_request, sleep_recorder):
        await FormFiller(pace=0.5, sleep=sleep_recorder).fill_search_form(form_page, search_request)
        assert sleep_recorder.calls
        assert max(sleep_recorder.calls) <= 0.4
