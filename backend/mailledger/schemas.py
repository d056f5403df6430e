"""Pydantic schemas for API and AI structured output."""
from datetime import datetime
from pydantic import BaseModel, Field
from typing import Optional, List, Literal


# =============================================================================
# AI Structured Output Schemas
# =============================================================================

TransactionType = Literal["purchase", "incoming", "outgoing", "transfer", "payment"]
TransactionMethod = Literal["llave", "PSE", "card", "ACH", "other"]

Category = Literal[
    "food_dining",
    "transportation",
    "housing",
    "shopping",
    "entertainment",
    "health",
    "financial",
    "education",
    "travel",
    "income",
    "other",
]

Subcategory = Literal[
    "groceries", "restaurants", "delivery", "coffee_bakery", "bars_alcohol",
    "fuel", "public_transit", "rideshare", "parking_tolls", "vehicle_maintenance",
    "rent_mortgage", "utilities_electric", "utilities_water", "utilities_gas",
    "internet_tv", "phone_plan", "home_maintenance",
    "clothing_accessories", "electronics", "home_furniture", "personal_care", "pets", "gifts",
    "streaming", "gaming", "movies_events", "books_magazines", "hobbies",
    "medical_appointments", "pharmacy_medications", "gym_fitness", "insurance_health",
    "bank_fees", "loan_payment", "credit_card_payment", "insurance_other", "investments", "taxes",
    "tuition_courses", "books_supplies", "subscriptions_learning",
    "flights", "hotels_lodging", "travel_activities",
    "salary", "freelance", "reimbursement", "gift_received", "investment_return",
    "uncategorized",
]


class _Strict(BaseModel):
    class Config:
        extra = "forbid"


class ClassifiedTransaction(_Strict):
    type: TransactionType
    amount: float
    description: str
    date: str
    method: TransactionMethod


class ClassificationResult(_Strict):
    should_track: bool
    transaction: Optional[ClassifiedTransaction]
    exclusion_reason: Optional[str]


class CategorizationResult(_Strict):
    category: Category
    subcategory: Subcategory
    confidence: Literal["high", "medium", "low"]
    notes: Optional[str]


class TimeExtractionResult(_Strict):
    transaction_datetime: Optional[str]
    transaction_date: Optional[str]
    transaction_time: Optional[str]
    extraction_successful: bool
    notes: Optional[str]


class MovementPair(_Strict):
    outgoing_id: str
    incoming_id: str
    amount: float
    datetime: str
    reason: str


class InternalMovementResult(_Strict):
    internal_movement_ids: List[str]
    pairs: List[MovementPair]
    notes: Optional[str]


# =============================================================================
# Processing jobs
# =============================================================================

class ProcessStartRequest(BaseModel):
    limit: Optional[int] = Field(default=None, ge=1, le=500)


class ProcessStartResponse(BaseModel):
    job_id: str
    status: str
    message: str


class JobStatusResponse(BaseModel):
    job_id: str
    status: str
    trigger: Optional[str] = None
    message: str = ""
    limit: int = 0
    processed: int = 0
    total: int = 0
    remaining: Optional[int] = None
    current_item: Optional[str] = None
    timed_out: bool = False
    error: Optional[str] = None
    error_category: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class UnprocessResponse(BaseModel):
    reset: int


# =============================================================================
# Sync
# =============================================================================

class SyncStartResponse(BaseModel):
    message: str
    status: str


class SyncStatusResponse(BaseModel):
    status: str = "idle"
    lookback_hours: Optional[int] = None
    emails_fetched: int = 0
    new_emails: int = 0
    existing_emails: int = 0
    emails_queued: int = 0
    emails_processed: int = 0
    emails_remaining: int = 0
    job_id: Optional[str] = None
    triggered_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_successful_sync_at: Optional[datetime] = None
    error: Optional[str] = None
    error_category: Optional[str] = None


# =============================================================================
# Transactions
# =============================================================================

class TransactionResponse(BaseModel):
    id: str
    message_id: str
    email_subject: Optional[str] = None
    should_track: bool
    transaction_type: Optional[str] = None
    amount: Optional[float] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    transaction_datetime: Optional[str] = None
    transaction_date: Optional[str] = None
    confirmed: Optional[bool] = None
    internal_movement: bool = False
    internal_movement_checked: bool = False
    classification: Optional[dict] = None
    categorization: Optional[dict] = None
    time_extraction: Optional[dict] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TransactionUpdate(BaseModel):
    category: Optional[Category] = None
    subcategory: Optional[Subcategory] = None
    confirmed: Optional[bool] = None


class InternalMovementRequest(BaseModel):
    target_date: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$")


class InternalMovementResponse(BaseModel):
    checked: int
    internal_movements: int
    pairs: List[MovementPair] = []
    notes: Optional[str] = None


class ResetResponse(BaseModel):
    reset: int
