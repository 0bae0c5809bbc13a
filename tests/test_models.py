"""
Request, record and outcome models.
"""

import dataclasses

import pytest

from core.models import ChallengeDescriptor, ExtractedRecord, SearchOutcome, SearchRequest


class TestSearchRequest:

    def test_scenario_ben_smith_austin_texas(self, search_request):
        assert search_request.first_name == "Benjamin"
        assert search_request.last_name == "Smith"
        assert search_request.city == "Austin"
        assert search_request.state == "TX"
        assert search_request.state_name == "Texas"

    def test_immutable(self, search_request):
        with pytest.raises(dataclasses.FrozenInstanceError):
            search_request.first_name = "Ben"

    def test_solver_needs_flag_and_key(self):
        assert not SearchRequest.create("A", "B", "C", "TX", use_challenge_solver=True).solver_enabled
        assert not SearchRequest.create("A", "B", "C", "TX", solver_api_key="k" * 32).solver_enabled
        assert SearchRequest.create("A", "B", "C", "TX", True, "k" * 32).solver_enabled

    def test_blank_key_is_none(self):
        request = SearchRequest.create("A", "B", "C", "TX", True, "   ")
        assert request.solver_api_key is None

    def test_owner_names(self, search_request):
        assert search_request.owner_names == ["BENJAMIN SMITH", "SMITH BENJAMIN", "SMITH, BENJAMIN"]

    def test_request_ids_unique(self):
        ids = {SearchRequest.create("A", "B", "C", "TX").request_id for _ in range(20)}
        assert len(ids) == 20


class TestChallengeDescriptor:

    def test_task_with_only_required_fields(self):
        task = ChallengeDescriptor(site_key="0x4AAAAAAAkey", page_url="https://example.test/").to_task()
        assert task == {
            "type": "TurnstileTaskProxyless",
            "websiteURL": "https://example.test/",
            "websiteKey": "0x4AAAAAAAkey",
        }

    def test_task_with_render_parameters(self):
        task = ChallengeDescriptor(
            site_key="k", page_url="u", action="managed", c_data="cdata", page_data="chl"
        ).to_task()
        assert task["action"] == "managed"
        assert task["data"] == "cdata"
        assert task["pagedata"] == "chl"


class TestOutcome:

    def test_record_value_and_key(self):
        record = ExtractedRecord(entity="  Acme   Bank ", amount="OVER $500")
        assert record.value == 500.0
        assert record.key() == ("ACME BANK", "$500")

    def test_record_without_amount_is_worth_zero(self):
        assert ExtractedRecord(entity="Acme", amount="Amount not specified").value == 0.0

    def test_success_body(self):
        outcome = SearchOutcome(success=True, results=[
            ExtractedRecord(entity="Acme Bank", amount="OVER $500", raw_context="row"),
            ExtractedRecord(entity="Utility Co", amount="UNDISCLOSED"),
        ])
        body = outcome.to_dict()
        assert body["success"] is True
        assert body["totalAmount"] == 600.0
        assert body["results"][0] == {"entity": "Acme Bank", "amount": "OVER $500", "value": 500.0, "rawContext": "row"}
        assert "error" not in body and "retryable" not in body

    def test_failure_body(self):
        body = SearchOutcome.failure("Server is busy", retryable=True).to_dict()
        assert body == {"success": False, "results": [], "totalAmount": 0.0, "error": "Server is busy", "retryable": True}
