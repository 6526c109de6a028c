"""
Pydantic schemas for ledger data, classifier output and run results.
Decision and categorization confidences use the 0-1 scale; stored
merchant confidence scores use 0-100.
"""
from datetime import datetime
from enum import Enum
from typing import Annotated, Dict, List, Optional

from pydantic import BaseModel, BeforeValidator, Field


def normalize_confidence(v):
    """Accept a 0-100 confidence from the classifier and rescale it to 0-1."""
    if isinstance(v, bool) or v is None:
        raise ValueError("confidence must be a number")
    if isinstance(v, str):
        v = float(v.strip().rstrip("%"))
    if isinstance(v, (int, float)) and 1.0 < v <= 100.0:
        return v / 100.0
    return v


def strip_text(v):
    """Trim surrounding whitespace from free-text fields."""
    if isinstance(v, str):
        return v.strip()
    return v


def normalize_reasoning(v):
    """Classifier may send null reasoning."""
    if v is None:
        return ""
    return strip_text(v)


class DecisionSource(str, Enum):
    """Where a categorization decision came from."""
    HISTORY = "history"
    CLASSIFIER = "classifier"
    ERROR = "error"


class Category(BaseModel):
    """Ledger budget category."""
    id: str
    name: str
    group_name: Optional[str] = None


class LedgerTransaction(BaseModel):
    """Unapproved ledger transaction, amount already converted from milliunits."""
    id: str
    date: Optional[str] = None
    amount: float = 0.0
    payee_name: Optional[str] = None
    category_name: Optional[str] = None
    category_id: Optional[str] = None
    account_name: Optional[str] = None
    memo: Optional[str] = None
    approved: bool = False


class ClassifierResponse(BaseModel):
    """
    Structured output the classifier must return.
    This is the JSON object the prompt asks for.
    """
    category: Annotated[str, BeforeValidator(strip_text)] = Field(..., min_length=1)
    confidence: Annotated[float, BeforeValidator(normalize_confidence)] = Field(..., ge=0.0, le=1.0)
    reasoning: Annotated[str, BeforeValidator(normalize_reasoning)] = ""


class Merchant(BaseModel):
    """Normalized payee identity."""
    id: int
    name: str
    normalized_name: str


class CategoryHistory(BaseModel):
    """Aggregated categorization events for one merchant/category pair."""
    category_name: str
    category_id: Optional[str] = None
    avg_confidence: float
    usage_count: int
    confidence_score: float


class MostLikelyCategory(BaseModel):
    """Category with the highest weighted score for a merchant."""
    category: str
    confidence: float
    usage_count: int


class MerchantHistory(BaseModel):
    """Learned history for one merchant, as seen by the decision policy."""
    merchant_name: str
    is_new: bool = True
    merchant_id: Optional[int] = None
    total_transactions: int = 0
    history: List[CategoryHistory] = Field(default_factory=list)
    most_likely: Optional[MostLikelyCategory] = None
    recent_categories: List[str] = Field(default_factory=list)

    @classmethod
    def new(cls, merchant_name: str) -> "MerchantHistory":
        return cls(merchant_name=merchant_name, is_new=True)


class Decision(BaseModel):
    """Categorization decision for one transaction."""
    category: str
    category_id: Optional[str] = None
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str = ""
    source: DecisionSource
    auto_approved: bool = False

    @property
    def confidence_pct(self) -> int:
        return round(self.confidence * 100)


class ProcessedTransaction(BaseModel):
    """Per-transaction detail reported in the run summary and notification."""
    transaction_id: str
    payee: str
    amount: float
    category: str
    confidence: float
    approved: bool
    source: DecisionSource
    reasoning: str = ""
    stored: bool = True


class RunSummary(BaseModel):
    """Final counters for one categorization run."""
    processed: int = 0
    approved: int = 0
    pending: int = 0
    errors: int = 0
    details: List[ProcessedTransaction] = Field(default_factory=list)

    def stats(self) -> Dict[str, int]:
        return {
            "processed": self.processed,
            "approved": self.approved,
            "pending": self.pending,
            "errors": self.errors,
        }


class ProviderUsage(BaseModel):
    """Persisted usage counters for one external provider."""
    daily: int = 0
    monthly: int = 0
    cost_estimate: float = 0.0
    last_reset: datetime


class CorrectionRequest(BaseModel):
    """Human override of a prior categorization."""
    merchant_name: str = Field(..., min_length=1)
    old_category: str = Field(..., min_length=1)
    new_category: str = Field(..., min_length=1)


class MerchantRule(BaseModel):
    """Exported/imported merchant confidence row."""
    merchant_name: str = Field(..., min_length=1)
    category_name: str = Field(..., min_length=1)
    confidence_score: Optional[float] = None
    success_count: int = 0
    correction_count: int = 0
