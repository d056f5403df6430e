import json
from types import SimpleNamespace

import httpx
import openai
import pytest

from mailledger import langgraph_pipeline as lp
from mailledger.errors import StructuralResponseError, TransientAIError

RESPONSES = {
    "classification": json.dumps(
        {
            "should_track": True,
            "transaction": {
                "type": "incoming",
                "amount": 50000,
                "description": "Abono Transferencia",
                "date": "2026/01/03",
                "method": "llave",
            },
            "exclusion_reason": None,
        }
    ),
    "categorization": json.dumps(
        {"category": "income", "subcategory": "reimbursement", "confidence": "medium", "notes": None}
    ),
    "time_extraction": json.dumps(
        {
            "transaction_datetime": "2026-01-03T18:26:40-05:00",
            "transaction_date": "2026-01-03",
            "transaction_time": "18:26:40",
            "extraction_successful": True,
            "notes": None,
        }
    ),
}


def test_process_transaction_runs_all_three_calls(monkeypatch):
    """Full fan-out with mocked model responses (no network)."""
    calls = []

    def fake_call(name, system_prompt, user_content, schema, model):
        calls.append((name, model))
        assert json.loads(user_content) == {"subject": "Abono", "body": "Fecha: 2026/01/03 Hora: 18:26:40"}
        return RESPONSES[name]

    monkeypatch.setattr(lp, "_call_structured", fake_call)

    result = lp.process_transaction("Abono", "Fecha: 2026/01/03 Hora: 18:26:40")

    assert result["classification"].should_track is True
    assert result["classification"].transaction.method == "llave"
    assert result["categorization"].subcategory == "reimbursement"
    assert result["time_extraction"].transaction_datetime.endswith("-05:00")
    assert sorted(name for name, _ in calls) == ["categorization", "classification", "time_extraction"]
    assert dict(calls)["categorization"] == lp.settings.openai_reasoning_model


def test_transient_errors_are_retried_then_succeed(monkeypatch):
    attempts = {"n": 0}

    def flaky(name, system_prompt, user_content, schema, model):
        attempts["n"] += 1
        if attempts["n"] < 3:
            raise TransientAIError("classification: RateLimitError")
        return RESPONSES["classification"]

    monkeypatch.setattr(lp, "_call_structured", flaky)
    assert lp.classify_transaction("s", "b").transaction.amount == 50000
    assert attempts["n"] == 3


def test_transient_errors_give_up_after_max_retries(monkeypatch):
    attempts = {"n": 0}

    def down(name, system_prompt, user_content, schema, model):
        attempts["n"] += 1
        raise TransientAIError("time_extraction: APITimeoutError")

    monkeypatch.setattr(lp, "_call_structured", down)
    with pytest.raises(TransientAIError):
        lp.extract_transaction_time("s", "b")
    assert attempts["n"] == 1 + lp.settings.openai_max_retries


def test_schema_mismatch_is_not_retried(monkeypatch):
    attempts = {"n": 0}

    def wrong_shape(name, system_prompt, user_content, schema, model):
        attempts["n"] += 1
        return json.dumps({"category": "groceries_and_more", "subcategory": "x", "confidence": "high", "notes": None})

    monkeypatch.setattr(lp, "_call_structured", wrong_shape)
    with pytest.raises(StructuralResponseError):
        lp.categorize_transaction("s", "b")
    assert attempts["n"] == 1


def test_process_transaction_propagates_branch_failure(monkeypatch):
    def fake_call(name, system_prompt, user_content, schema, model):
        if name == "time_extraction":
            return "not json"
        return RESPONSES[name]

    monkeypatch.setattr(lp, "_call_structured", fake_call)
    with pytest.raises(Exception):
        lp.process_transaction("s", "b")


def test_detect_internal_movements_empty_input_skips_call(monkeypatch):
    def never(*args, **kwargs):
        raise AssertionError("should not call the model")

    monkeypatch.setattr(lp, "_call_structured", never)
    result = lp.detect_internal_movements([])
    assert result.internal_movement_ids == []
    assert result.pairs == []


@pytest.fixture
def use_client():
    """Install a stand-in OpenAI client for one test."""
    yield lp.set_openai_client
    lp.set_openai_client(None)


def _client_raising(exc=None, content="{}"):
    def create(**kwargs):
        if exc is not None:
            raise exc
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])

    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


def test_call_structured_maps_timeouts_to_transient(use_client):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    use_client(_client_raising(openai.APITimeoutError(request=request)))
    with pytest.raises(TransientAIError):
        lp._call_structured("classification", "sys", "{}", lp.CLASSIFICATION_SCHEMA, "gpt-5-mini")


def test_call_structured_empty_content_is_structural(use_client):
    use_client(_client_raising(content=""))
    with pytest.raises(StructuralResponseError):
        lp._call_structured("classification", "sys", "{}", lp.CLASSIFICATION_SCHEMA, "gpt-5-mini")


def test_categorization_schema_lists_every_subcategory():
    props = lp.CATEGORIZATION_SCHEMA["schema"]["properties"]
    assert len(props["category"]["enum"]) == 11
    assert len(props["subcategory"]["enum"]) == 50
    assert "uncategorized" in props["subcategory"]["enum"]
