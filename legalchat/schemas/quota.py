"""Schemas for the quota gate and its endpoints."""

from pydantic import BaseModel, Field


class Identity(BaseModel):
    """Authenticated user, as forwarded by the auth layer."""

    user_id: str = Field(..., min_length=1)
    email: str | None = None


class QuotaDecision(BaseModel):
    """Outcome of a quota check. A block is a decision, not an error."""

    can_send_message: bool
    should_switch_model: bool = False
    message: str | None = None


class UsageStats(BaseModel):
    """Read-only view of today's counters for one user."""

    total_used: int
    paid_used: int
    total_limit: int
    paid_limit: int
    is_member: bool
