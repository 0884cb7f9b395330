"""Entity records kept in the structured record store.

Records travel as camelCase JSON objects (the shape the application and
the legacy blobs use). Unknown fields are preserved untouched.
"""
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Record(BaseModel):
    """Base record: a required, non-empty string identifier."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    id: str = Field(min_length=1)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        # auto-increment keys from older stores are integers
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    def to_json(self) -> dict[str, Any]:
        """Dump as camelCase JSON; optional fields never set are left out."""
        unset = {
            name for name in type(self).model_fields
            if name not in self.model_fields_set and getattr(self, name) is None
        }
        return self.model_dump(by_alias=True, exclude=unset)


class Transaction(Record):
    date: str
    description: str = ""
    amount: float
    type: Literal["income", "expense"]
    category: str
    emoji: Optional[str] = None


class Goal(Record):
    name: str
    description: Optional[str] = None
    target_amount: float
    current_amount: float = 0
    priority: Literal["low", "medium", "high"] = "medium"
    category: str = "custom"
    target_date: Optional[str] = None
    is_active: bool = True
    allocation_rules: list[dict[str, Any]] = Field(default_factory=list)
    progress_history: list[dict[str, Any]] = Field(default_factory=list)
    auto_allocate: bool = False
    monthly_target: Optional[float] = None


class Bill(Record):
    name: str
    amount: float
    day_of_month: int = Field(ge=1, le=31)
    category: str
    frequency: Optional[Literal["monthly", "weekly", "yearly"]] = None


class Budget(Record):
    category: str
    amount: float
    month: str  # YYYY-MM


class RecurringTransaction(Record):
    description: str = ""
    amount: float
    type: Literal["income", "expense"]
    category: str
    frequency: Literal["weekly", "monthly", "yearly"]
    start_date: str
    next_due_date: str


class Notification(Record):
    title: str
    message: str
    date: str
    read: bool = False
    type: Optional[str] = None
    related_id: Optional[str] = None
    urgent: Optional[bool] = None


class GoalContribution(Record):
    transaction_id: Optional[str] = None
    goal_id: str
    amount: float
    date: str
    type: Literal["auto", "manual"] = "manual"


class BillPayment(Record):
    bill_id: str
    month: str
    paid_date: str
    amount: float


MODELS: dict[str, type[Record]] = {
    "transactions": Transaction,
    "goals": Goal,
    "bills": Bill,
    "budgets": Budget,
    "recurring_transactions": RecurringTransaction,
    "notifications": Notification,
    "goal_contributions": GoalContribution,
    "bill_payments": BillPayment,
}

RecordLike = Union[Record, dict[str, Any]]
