"""
Persisted Row Models

One typed model per backend table. Every payload coming back from the
database or the change feed is decoded through these models before it is
mapped into an application entity, so a schema drift shows up as a
validation error at the store-access boundary instead of leaking
half-populated dicts into the rest of the app.

Nullable columns are Optional. Unknown columns are ignored because the
backend can add columns without a client release.
"""

from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class _Row(BaseModel):
    model_config = ConfigDict(extra="ignore")

    @classmethod
    def decode(cls, raw: Any) -> "_Row":
        """Decode a raw row (dict or already-decoded model)."""
        if isinstance(raw, cls):
            return raw
        return cls.model_validate(raw)


class TransactionRow(_Row):
    id: str
    couple_id: Optional[str] = None
    user_id: Optional[str] = None
    amount: Optional[Decimal] = None
    category: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    date: Optional[str] = None
    status: Optional[str] = None
    linked_task_id: Optional[str] = None
    created_at: Optional[str] = None


class GoalRow(_Row):
    id: str
    couple_id: Optional[str] = None
    title: Optional[str] = None
    target_amount: Optional[Decimal] = None
    current_amount: Optional[Decimal] = None
    deadline: Optional[str] = None
    status: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None


class TaskRow(_Row):
    id: str
    couple_id: Optional[str] = None
    title: Optional[str] = None
    assignee_id: Optional[str] = None
    deadline: Optional[str] = None
    completed: Optional[bool] = None
    financial_impact: Optional[Decimal] = None
    priority: Optional[str] = None
    linked_goal_id: Optional[str] = None
    created_at: Optional[str] = None


class EventRow(_Row):
    id: str
    couple_id: Optional[str] = None
    title: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    type: Optional[str] = None
    google_event_id: Optional[str] = None
    assignee_id: Optional[str] = None
    created_at: Optional[str] = None


class InvestmentRow(_Row):
    id: Optional[str] = None
    couple_id: Optional[str] = None
    symbol: Optional[str] = None
    name: Optional[str] = None
    quantity: Optional[Decimal] = None
    purchase_price: Optional[Decimal] = None
    current_price: Optional[Decimal] = None
    change_percent: Optional[Decimal] = None
    created_at: Optional[str] = None


class ProfileRow(_Row):
    id: str
    couple_id: Optional[str] = None
    full_name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    monthly_income: Optional[Decimal] = None
    income_receipt_day: Optional[int] = None
    # Older rows were written with this column name
    income_date: Optional[int] = None
    risk_profile: Optional[str] = None
    onboarding_completed: Optional[bool] = None
    avatar_url: Optional[str] = None


class CoupleRow(_Row):
    id: str
    name: Optional[str] = None
    subscription_status: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    financial_risk_profile: Optional[str] = None
    created_at: Optional[str] = None


class InviteRow(_Row):
    id: Optional[str] = None
    couple_id: str
    created_by: Optional[str] = None
    token: str
    email: Optional[str] = None
    status: str = "pending"
    expires_at: Optional[str] = None
    created_at: Optional[str] = None
