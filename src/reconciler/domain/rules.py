"""Match rule evaluation and rule management.

``evaluate`` is a pure function: it never touches the database and is safe
to call from any thread. ``RuleService`` manages the stored rules.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from reconciler.database.base import Database
from reconciler.domain.authorization import Authorizer, Permission, require_permission
from reconciler.domain.entities import MatchRule, Transaction
from reconciler.domain.errors import NotFoundError, ValidationError, not_found
from reconciler.utils.amount_parser import to_minor_units

logger = logging.getLogger(__name__)

AMOUNT_EPSILON = 1e-6

# Score weights, largest first: date proximity dominates, then amount
# proximity, then an exact reference
DATE_WEIGHT = 100.0
AMOUNT_WEIGHT = 10.0
EXACT_REFERENCE_WEIGHT = 1.0


class Criterion(str, Enum):
    """Rule criteria in evaluation order."""

    AMOUNT = "amount"
    DATE = "date"
    REFERENCE = "reference"


@dataclass(frozen=True)
class MatchEvaluation:
    is_candidate: bool
    score: float
    failed_criterion: Optional[Criterion] = None


def _normalize_reference(reference: Optional[str]) -> str:
    return (reference or "").strip().casefold()


def _amount_delta(a: Transaction, b: Transaction) -> int:
    """Distance from a perfect offset, in minor units of ``a``'s currency."""
    return abs(to_minor_units(a.amount, a.currency) + to_minor_units(b.amount, a.currency))


def amounts_offset(a: Transaction, b: Transaction) -> bool:
    """True when the amounts cancel out in the same currency."""
    if (a.currency or "").strip().upper() != (b.currency or "").strip().upper():
        return False
    return _amount_delta(a, b) <= AMOUNT_EPSILON


def references_match(a: Transaction, b: Transaction) -> bool:
    """Equal or one contained in the other, ignoring case and outer whitespace.

    Blank references never match.
    """
    ref_a = _normalize_reference(a.reference)
    ref_b = _normalize_reference(b.reference)
    if not ref_a or not ref_b:
        return False
    return ref_a == ref_b or ref_a in ref_b or ref_b in ref_a


def date_delta_days(a: Transaction, b: Transaction) -> int:
    return abs((a.transaction_date - b.transaction_date).days)


def score_pair(a: Transaction, b: Transaction) -> float:
    """Closeness score used only to order accepted candidates."""
    ref_a = _normalize_reference(a.reference)
    exact_reference = bool(ref_a) and ref_a == _normalize_reference(b.reference)
    return (
        DATE_WEIGHT / (1 + date_delta_days(a, b))
        + AMOUNT_WEIGHT / (1 + _amount_delta(a, b))
        + (EXACT_REFERENCE_WEIGHT if exact_reference else 0.0)
    )


def evaluate(a: Transaction, b: Transaction, rule: MatchRule) -> MatchEvaluation:
    """Decide whether ``b`` is a match candidate for ``a`` under ``rule``.

    Every enabled criterion must pass. A rule with no enabled criterion
    accepts every pair; callers are expected to refuse such rules before
    running (see ``ensure_rule_usable``).

    Args:
        a: Transaction being matched
        b: Candidate transaction
        rule: Rule snapshot

    Returns:
        MatchEvaluation with the score, or the first criterion that failed
    """
    if rule.match_by_amount and not amounts_offset(a, b):
        return MatchEvaluation(False, 0.0, Criterion.AMOUNT)
    if rule.match_by_date and date_delta_days(a, b) > rule.date_tolerance_days:
        return MatchEvaluation(False, 0.0, Criterion.DATE)
    if rule.match_by_reference and not references_match(a, b):
        return MatchEvaluation(False, 0.0, Criterion.REFERENCE)
    return MatchEvaluation(True, score_pair(a, b))


def ensure_rule_usable(rule: MatchRule) -> None:
    """Raise ValidationError for rules that must not drive a run."""
    if not rule.active:
        raise ValidationError(f"Match rule '{rule.name}' is inactive")
    if not rule.has_criteria:
        raise ValidationError(
            f"Match rule '{rule.name}' has no active criteria; enable amount, date or reference matching"
        )


class RuleService:
    """Service for managing match rules."""

    def __init__(self, db: Database, authorizer: Optional[Authorizer] = None):
        """Initialize rule service.

        Args:
            db: Database instance
            authorizer: When given, changes require the manage:rules permission
        """
        self.db = db
        self.authorizer = authorizer

    def _authorize(self, user_id: Optional[str], tenant_id: str) -> None:
        if self.authorizer is not None:
            require_permission(self.authorizer, user_id or "", Permission.MANAGE_RULES, tenant_id)

    @staticmethod
    def _check_tolerance(date_tolerance_days: int) -> None:
        if date_tolerance_days < 0:
            raise ValidationError("Date tolerance must be zero or more days")

    def create_rule(
        self,
        tenant_id: str,
        name: str,
        match_by_amount: bool = False,
        match_by_date: bool = False,
        date_tolerance_days: int = 0,
        match_by_reference: bool = False,
        description: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> int:
        """Create a match rule.

        Returns:
            Rule ID

        Raises:
            ValidationError: If the name is blank or the tolerance is negative
        """
        self._authorize(created_by, tenant_id)
        if not name or not name.strip():
            raise ValidationError("Rule name is required")
        self._check_tolerance(date_tolerance_days)

        rule_id = self.db.create_match_rule(
            tenant_id=tenant_id,
            name=name.strip(),
            match_by_amount=match_by_amount,
            match_by_date=match_by_date,
            date_tolerance_days=date_tolerance_days,
            match_by_reference=match_by_reference,
            description=description,
            created_by=created_by,
        )
        logger.info("Created match rule %s (%s) in tenant %s", rule_id, name, tenant_id)
        return rule_id

    def get_rule(self, rule_id: int, tenant_id: str) -> MatchRule:
        rule = self.db.get_match_rule(rule_id, tenant_id)
        if rule is None:
            raise NotFoundError(not_found("Match rule", rule_id))
        return rule

    def list_rules(self, tenant_id: str) -> list[MatchRule]:
        return self.db.list_match_rules(tenant_id)

    def update_rule(self, rule_id: int, tenant_id: str, user_id: Optional[str] = None, **changes) -> MatchRule:
        """Update rule fields. Runs already started keep their snapshot."""
        self._authorize(user_id, tenant_id)
        self.get_rule(rule_id, tenant_id)
        if "date_tolerance_days" in changes:
            self._check_tolerance(changes["date_tolerance_days"])
        self.db.update_match_rule(rule_id, **changes)
        return self.get_rule(rule_id, tenant_id)

    def deactivate_rule(self, rule_id: int, tenant_id: str, user_id: Optional[str] = None) -> MatchRule:
        return self.update_rule(rule_id, tenant_id, user_id=user_id, active=False)
