"""
Quota gate: decide whether a user may send a message, and whether they should
move to a free model.

Two independent daily limits:
- total submissions (patron vs standard tier), counted on every check;
- paid-model usage (standard tier only), read first and counted only when allowed.
A failed total check short-circuits; the paid-model check never runs.
Running out of paid-model messages is a soft downgrade: allowed, but flagged.
"""

import logging

from legalchat.core.config import FREE_MODEL_MARKER, FREE_PAID_MODEL_LIMIT, FREE_TOTAL_LIMIT, PATRON_TOTAL_LIMIT
from legalchat.core.quota_store import PAID_MODEL, TOTAL, QuotaCounterStore
from legalchat.schemas.quota import Identity, QuotaDecision, UsageStats
from legalchat.services.membership import MembershipDirectory

logger = logging.getLogger(__name__)


def is_free_model(model_name: str) -> bool:
    return FREE_MODEL_MARKER in (model_name or "").lower()


def is_paid_model(model_name: str) -> bool:
    return not is_free_model(model_name)


class QuotaGate:
    """Quota check bound to one identity and the model the user selected."""

    def __init__(
        self,
        identity: Identity | None,
        selected_model: str,
        store: QuotaCounterStore,
        membership: MembershipDirectory,
        *,
        member_total_limit: int = PATRON_TOTAL_LIMIT,
        standard_total_limit: int = FREE_TOTAL_LIMIT,
        standard_paid_limit: int = FREE_PAID_MODEL_LIMIT,
    ) -> None:
        self.identity = identity
        self.selected_model = selected_model
        self.store = store
        self.membership = membership
        self.member_total_limit = member_total_limit
        self.standard_total_limit = standard_total_limit
        self.standard_paid_limit = standard_paid_limit

    def _authenticated(self) -> bool:
        return self.identity is not None and bool(self.identity.user_id) and bool(self.identity.email)

    def check(self, is_paid_model_requested: bool) -> QuotaDecision:
        if not self._authenticated():
            logger.info("[quota:check] OUT blocked: not authenticated")
            return QuotaDecision(can_send_message=False, should_switch_model=False, message="User not authenticated")

        user_id = self.identity.user_id
        member = self.membership.is_member(self.identity.email)
        total_limit = self.member_total_limit if member else self.standard_total_limit

        total_count = self.store.count_and_increment(user_id, TOTAL)
        logger.info("[quota:check] user_id=%s member=%s total_count=%d total_limit=%d", user_id, member, total_count, total_limit)
        if total_count > total_limit:
            if member:
                message = f"Osiągnięto dzienny limit {total_limit} wiadomości. Spróbuj ponownie jutro."
            else:
                message = (
                    f"Osiągnięto dzienny limit {total_limit} wiadomości. "
                    "Zostań patronem, aby uzyskać więcej możliwości."
                )
            return QuotaDecision(can_send_message=False, should_switch_model=False, message=message)

        if not member and is_paid_model_requested:
            paid_count = self.store.get_count(user_id, PAID_MODEL)
            if paid_count >= self.standard_paid_limit and not is_free_model(self.selected_model):
                logger.info(
                    "[quota:check] OUT switch model user_id=%s paid_count=%d model=%s",
                    user_id,
                    paid_count,
                    self.selected_model,
                )
                return QuotaDecision(
                    can_send_message=True,
                    should_switch_model=True,
                    message=(
                        f"Wykorzystano limit {self.standard_paid_limit} wiadomości do zaawansowanych modeli. "
                        "Przełączam model."
                    ),
                )
            self.store.count_and_increment(user_id, PAID_MODEL)

        return QuotaDecision(can_send_message=True, should_switch_model=False)

    def usage_stats(self) -> UsageStats | None:
        """Today's usage, without counting anything. None when not authenticated."""
        if not self._authenticated():
            return None
        user_id = self.identity.user_id
        member = self.membership.is_member(self.identity.email)
        total_used = self.store.get_count(user_id, TOTAL)
        paid_used = 0 if member else self.store.get_count(user_id, PAID_MODEL)
        return UsageStats(
            total_used=total_used,
            paid_used=paid_used,
            total_limit=self.member_total_limit if member else self.standard_total_limit,
            paid_limit=self.standard_paid_limit,
            is_member=member,
        )
