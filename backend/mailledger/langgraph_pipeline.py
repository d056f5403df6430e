"""
LangGraph-powered transaction analysis pipeline.

Four structured-output calls against OpenAI:
1. Classification (should the notification be tracked, and its fields)
2. Categorization (category / subcategory)
3. Time extraction (when the bank says the transaction happened)
4. Internal-movement pairing (batch call, run by the detector)

The first three are independent and run as a parallel fan-out graph.
Every call has its own timeout; transient failures are retried with
exponential backoff, malformed responses are not.
"""
import json
import logging
import time
from typing import Any, Callable, Optional, TypeVar
from typing_extensions import TypedDict

import openai
from langgraph.graph import StateGraph, START, END
from pydantic import BaseModel, ValidationError

from .config import settings
from .errors import StructuralResponseError, TransientAIError
from .schemas import (
    CategorizationResult,
    ClassificationResult,
    InternalMovementResult,
    TimeExtractionResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


# =============================================================================
# Prompts
# =============================================================================

CLASSIFICATION_SYSTEM_PROMPT = """Transaction Classification Agent
You are a transaction classifier for a Colombian bank (Davivienda). Your task is to analyze transaction notifications and determine if they should be tracked.

TERMINOLOGY:
- "Abono" = money entered/credited to the account
- "Descuento" = money exited/debited from the account

INCLUDE these transaction types:
- Purchases at merchants (successful only)
- Incoming money via "llave"
- Outgoing money via "llave"
- Incoming money via other banks
- Transfers to other banks (PSE, ACH, etc.)
- Bill payments

EXCLUDE these transaction types:
- Failed or declined transactions
- Internal account movements containing "Bolsillo" ("Descuento Transferencia Bolsillo a Cuenta")

Input: JSON with the notification subject and body"""

CATEGORIZATION_SYSTEM_PROMPT = """You are a transaction categorizer. Given a transaction notification, classify it into the appropriate category and subcategory.

Categories and subcategories:
- food_dining: groceries (supermarkets, markets), restaurants (dine-in, fast food), delivery (Rappi, iFood, UberEats), coffee_bakery, bars_alcohol
- transportation: fuel (gas stations), public_transit (metro, bus), rideshare (Uber, Didi, taxi), parking_tolls, vehicle_maintenance (repairs, car wash)
- housing: rent_mortgage, utilities_electric, utilities_water, utilities_gas, internet_tv, phone_plan, home_maintenance
- shopping: clothing_accessories, electronics, home_furniture, personal_care (pharmacy, cosmetics), pets, gifts
- entertainment: streaming (Netflix, Spotify, YouTube), gaming, movies_events, books_magazines, hobbies
- health: medical_appointments, pharmacy_medications, gym_fitness, insurance_health
- financial: bank_fees, loan_payment, credit_card_payment, insurance_other, investments, taxes
- education: tuition_courses, books_supplies, subscriptions_learning (Coursera, Udemy)
- travel: flights, hotels_lodging, travel_activities
- income: salary, freelance, reimbursement, gift_received, investment_return
- other: uncategorized

Analyze the transaction and assign the most appropriate category and subcategory."""

TIME_EXTRACTION_SYSTEM_PROMPT = """Transaction Time Extraction Agent
You are a time extraction agent for Colombian bank transaction notifications. Extract the exact date and time when the transaction occurred according to the bank notification.

IMPORTANT: Extract the transaction time from the EMAIL BODY, NOT the email arrival time.
All times in these notifications are in Colombia timezone (UTC-5).

Common patterns in Davivienda notifications:
- "Fecha: 2026/01/03 Hora: 18:26:40" -> date: 2026-01-03, time: 18:26:40
- "Fecha: 03/01/2026 Hora: 6:30:00 PM" -> date: 2026-01-03, time: 18:30:00

OUTPUT FORMAT:
- transaction_datetime: ISO 8601 WITH the Colombia offset (e.g. "2026-01-03T18:26:40-05:00")
- transaction_date: YYYY-MM-DD
- transaction_time: HH:MM:SS, 24-hour
- extraction_successful: true if a valid date/time was found
- notes: anything relevant about the extraction

If no transaction time is found, set all date/time fields to null and extraction_successful to false."""

INTERNAL_MOVEMENT_SYSTEM_PROMPT = """Internal Movement Detection Agent
You detect internal transfers between a user's own bank accounts.

You receive an array of transactions, each with:
- id: unique transaction identifier
- amount: transaction amount
- type: "incoming" or "outgoing" (or another transaction type)
- transaction_datetime: when the transaction occurred
- email_body: the original bank notification content

Identify pairs of transactions that represent money moving between the user's OWN accounts.

CRITERIA FOR INTERNAL MOVEMENTS:
1. Same amount (exactly)
2. Same date and time (or within a few seconds/minutes)
3. One must be outgoing (Descuento) and one must be incoming (Abono)
4. Both should be transfers (look for "Transferencia" in the email body)
5. Both should come from the same bank's app (e.g. "App Davivienda")

IMPORTANT:
- Only flag transactions that are clearly internal movements between the user's own accounts
- If in doubt, DO NOT flag the transaction
- Return the ids of ALL transactions that are part of internal movements (both sides)"""


# =============================================================================
# Strict JSON schemas (OpenAI structured outputs)
# =============================================================================

def _nullable(kind: str) -> dict:
    return {"anyOf": [{"type": kind}, {"type": "null"}]}


CLASSIFICATION_SCHEMA = {
    "name": "transaction_classification",
    "strict": True,
    "schema": {
        "type": "object",
        "additionalProperties": False,
        "required": ["should_track", "transaction", "exclusion_reason"],
        "properties": {
            "should_track": {"type": "boolean"},
            "transaction": {
                "anyOf": [
                    {
                        "type": "object",
                        "additionalProperties": False,
                        "required": ["type", "amount", "description", "date", "method"],
                        "properties": {
                            "type": {
                                "type": "string",
                                "enum": ["purchase", "incoming", "outgoing", "transfer", "payment"],
                            },
                            "amount": {"type": "number"},
                            "description": {"type": "string"},
                            "date": {"type": "string"},
                            "method": {"type": "string", "enum": ["llave", "PSE", "card", "ACH", "other"]},
                        },
                    },
                    {"type": "null"},
                ]
            },
            "exclusion_reason": _nullable("string"),
        },
    },
}


def _literal_values(annotation) -> list:
    return list(getattr(annotation, "__args__", ()))


def _categorization_schema() -> dict:
    fields = CategorizationResult.model_fields
    return {
        "name": "transaction_categorization",
        "strict": True,
        "schema": {
            "type": "object",
            "additionalProperties": False,
            "required": ["category", "subcategory", "confidence", "notes"],
            "properties": {
                "category": {"type": "string", "enum": _literal_values(fields["category"].annotation)},
                "subcategory": {"type": "string", "enum": _literal_values(fields["subcategory"].annotation)},
                "confidence": {"type": "string", "enum": ["high", "medium", "low"]},
                "notes": _nullable("string"),
            },
        },
    }


CATEGORIZATION_SCHEMA = _categorization_schema()

TIME_EXTRACTION_SCHEMA = {
    "name": "transaction_time_extraction",
    "strict": True,
    "schema": {
        "type": "object",
        "additionalProperties": False,
        "required": [
            "transaction_datetime",
            "transaction_date",
            "transaction_time",
            "extraction_successful",
            "notes",
        ],
        "properties": {
            "transaction_datetime": _nullable("string"),
            "transaction_date": _nullable("string"),
            "transaction_time": _nullable("string"),
            "extraction_successful": {"type": "boolean"},
            "notes": _nullable("string"),
        },
    },
}

INTERNAL_MOVEMENT_SCHEMA = {
    "name": "internal_movement_detection",
    "strict": True,
    "schema": {
        "type": "object",
        "additionalProperties": False,
        "required": ["internal_movement_ids", "pairs", "notes"],
        "properties": {
            "internal_movement_ids": {"type": "array", "items": {"type": "string"}},
            "pairs": {
                "type": "array",
                "items": {
                    "type": "object",
                    "additionalProperties": False,
                    "required": ["outgoing_id", "incoming_id", "amount", "datetime", "reason"],
                    "properties": {
                        "outgoing_id": {"type": "string"},
                        "incoming_id": {"type": "string"},
                        "amount": {"type": "number"},
                        "datetime": {"type": "string"},
                        "reason": {"type": "string"},
                    },
                },
            },
            "notes": _nullable("string"),
        },
    },
}


# =============================================================================
# OpenAI Client
# =============================================================================

_client = None

# Errors worth another attempt. APITimeoutError subclasses APIConnectionError.
_TRANSIENT_OPENAI_ERRORS = (
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


def _get_openai_client():
    """Process-wide OpenAI client, created on first use. Retries are handled here, not by the SDK."""
    global _client
    if _client is None:
        api_key = settings.openai_api_key
        if not api_key:
            raise ValueError("OPENAI_API_KEY not set. Add to .env or environment.")
        _client = openai.OpenAI(api_key=api_key, timeout=settings.openai_timeout_s, max_retries=0)
    return _client


def set_openai_client(client) -> None:
    """Swap the process-wide client (tests, scripts with custom transports)."""
    global _client
    _client = client


def _call_structured(name: str, system_prompt: str, user_content: str, schema: dict, model: str) -> str:
    """One chat completion constrained to `schema`. Returns the raw JSON text."""
    client = _get_openai_client()
    try:
        response = client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
            response_format={"type": "json_schema", "json_schema": schema},
            timeout=settings.openai_timeout_s,
        )
    except _TRANSIENT_OPENAI_ERRORS as e:
        raise TransientAIError(f"{name}: {e.__class__.__name__}: {e}") from e

    content = response.choices[0].message.content if response.choices else None
    if not content:
        raise StructuralResponseError(f"No response content from OpenAI ({name})")
    return content


def _with_retry(fn: Callable[[], T], name: str, max_retries: Optional[int] = None) -> T:
    """Run fn, retrying TransientAIError with exponential backoff. Anything else propagates at once."""
    retries = settings.openai_max_retries if max_retries is None else max_retries
    attempt = 0
    while True:
        try:
            return fn()
        except TransientAIError as e:
            if attempt >= retries:
                logger.error(f"{name}: giving up after {attempt + 1} attempts: {e}")
                raise
            delay = settings.openai_backoff_base_s * (2 ** attempt)
            attempt += 1
            logger.warning(f"{name}: transient error ({e}); retry {attempt}/{retries} in {delay:.1f}s")
            time.sleep(delay)


def _parse(content: str, model_cls: type[M], name: str) -> M:
    try:
        return model_cls.model_validate_json(content)
    except ValidationError as e:
        raise StructuralResponseError(f"Invalid {name} response: {e.error_count()} schema errors") from e


def _message_payload(subject: str, body: str) -> str:
    return json.dumps({"subject": subject or "", "body": body or ""}, ensure_ascii=False)


# =============================================================================
# Facade operations
# =============================================================================

def classify_transaction(subject: str, body: str) -> ClassificationResult:
    payload = _message_payload(subject, body)
    content = _with_retry(
        lambda: _call_structured(
            "classification", CLASSIFICATION_SYSTEM_PROMPT, payload, CLASSIFICATION_SCHEMA, settings.openai_fast_model
        ),
        "classification",
    )
    return _parse(content, ClassificationResult, "classification")


def categorize_transaction(subject: str, body: str) -> CategorizationResult:
    payload = _message_payload(subject, body)
    content = _with_retry(
        lambda: _call_structured(
            "categorization",
            CATEGORIZATION_SYSTEM_PROMPT,
            payload,
            CATEGORIZATION_SCHEMA,
            settings.openai_reasoning_model,
        ),
        "categorization",
    )
    return _parse(content, CategorizationResult, "categorization")


def extract_transaction_time(subject: str, body: str) -> TimeExtractionResult:
    payload = _message_payload(subject, body)
    content = _with_retry(
        lambda: _call_structured(
            "time_extraction",
            TIME_EXTRACTION_SYSTEM_PROMPT,
            payload,
            TIME_EXTRACTION_SCHEMA,
            settings.openai_fast_model,
        ),
        "time_extraction",
    )
    return _parse(content, TimeExtractionResult, "time_extraction")


def detect_internal_movements(transactions: list[dict]) -> InternalMovementResult:
    """
    Ask the model which of `transactions` are two sides of a self-transfer.

    Each item: {id, amount, type, transaction_datetime, email_body}.
    """
    if not transactions:
        return InternalMovementResult(internal_movement_ids=[], pairs=[], notes="No transactions to analyze")
    payload = json.dumps(transactions, ensure_ascii=False, default=str)
    content = _with_retry(
        lambda: _call_structured(
            "internal_movement",
            INTERNAL_MOVEMENT_SYSTEM_PROMPT,
            payload,
            INTERNAL_MOVEMENT_SCHEMA,
            settings.openai_reasoning_model,
        ),
        "internal_movement",
    )
    return _parse(content, InternalMovementResult, "internal_movement")


# =============================================================================
# LangGraph fan-out
# =============================================================================

class TransactionState(TypedDict, total=False):
    subject: str
    body: str
    classification: ClassificationResult
    categorization: CategorizationResult
    time_extraction: TimeExtractionResult


def classify_node(state: TransactionState) -> dict:
    return {"classification": classify_transaction(state["subject"], state["body"])}


def categorize_node(state: TransactionState) -> dict:
    return {"categorization": categorize_transaction(state["subject"], state["body"])}


def extract_time_node(state: TransactionState) -> dict:
    return {"time_extraction": extract_transaction_time(state["subject"], state["body"])}


def create_transaction_graph() -> Any:
    """
    Build the per-message analysis graph.

    Flow: START -> {classify, categorize, extract_time} -> END
    The three branches share a superstep, so LangGraph runs them concurrently.
    """
    graph = StateGraph(TransactionState)

    graph.add_node("classify", classify_node)
    graph.add_node("categorize", categorize_node)
    graph.add_node("extract_time", extract_time_node)

    for node in ("classify", "categorize", "extract_time"):
        graph.add_edge(START, node)
        graph.add_edge(node, END)

    return graph.compile()


# Create singleton instance
transaction_graph = create_transaction_graph()


# =============================================================================
# Public API
# =============================================================================

def process_transaction(subject: str, body: str) -> TransactionState:
    """
    Run classification, categorization and time extraction for one message.

    Returns the graph state with all three results. Raises the first
    TransientAIError / StructuralResponseError any branch produced.
    """
    initial_state: TransactionState = {"subject": subject or "", "body": body or ""}
    return transaction_graph.invoke(initial_state)
