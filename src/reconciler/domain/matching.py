"""Matching orchestrator.

Groups the unmatched transactions of a match set's data sources with a
deterministic greedy heuristic:

* pools are processed in attachment order; the first pool seeds one group
  per transaction
* each following pool is matched against the current groups, oldest group
  first; a candidate joins a group only if it passes the rule against every
  member, and the best-scoring unconsumed candidate wins (earlier candidate
  on ties)
* leftovers of the pool seed new groups for the next pool

Groups of two or more transactions are written as Pending automatic
matches, one atomic write per group. Singletons are recorded as unmatched
with the reason they found no partner.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from reconciler.database.base import Database
from reconciler.domain.authorization import (
    Authorizer,
    Permission,
    RoleAuthorizer,
    require_permission,
)
from reconciler.domain.entities import (
    DataSource,
    MatchRule,
    MatchRun,
    MatchSet,
    MatchType,
    RunStatus,
    Transaction,
    TransactionMatch,
    TransactionStatus,
    UnmatchedTransaction,
)
from reconciler.domain.errors import (
    ConflictError,
    NotFoundError,
    RunAbortedError,
    ValidationError,
    not_found,
    run_aborted,
    run_already_in_progress,
    transactions_already_matched,
)
from reconciler.domain.rules import Criterion, MatchEvaluation, ensure_rule_usable, evaluate

logger = logging.getLogger(__name__)

NO_OTHER_TRANSACTIONS = "no transactions available in other data sources"
CANDIDATES_TAKEN = "qualifying candidates were already matched to other transactions"

_CRITERION_ORDER = [Criterion.AMOUNT, Criterion.DATE, Criterion.REFERENCE]


def _criterion_reason(criterion: Criterion, rule: MatchRule) -> str:
    if criterion == Criterion.AMOUNT:
        return "no candidate with an offsetting amount in the same currency"
    if criterion == Criterion.DATE:
        return f"no candidate within date tolerance of {rule.date_tolerance_days} days"
    return "no candidate with a matching reference"


@dataclass(frozen=True)
class RunSummary:
    """Outcome of one match set run."""

    run_id: int
    match_set_id: int
    status: RunStatus
    group_count: int
    matched_count: int
    unmatched_count: int
    conflict_count: int = 0
    match_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class MatchSetStatus:
    match_set_id: int
    name: str
    status: RunStatus
    data_sources: list[DataSource]
    total_transactions: int
    matched_count: int
    unmatched_count: int
    last_run: Optional[MatchRun]


@dataclass
class GroupingResult:
    """Planned groups plus the reason each leftover transaction stayed alone."""

    groups: list[list[Transaction]] = field(default_factory=list)
    unmatched: list[Transaction] = field(default_factory=list)
    reasons: dict[int, str] = field(default_factory=dict)


def _transaction_order(transaction: Transaction):
    return (transaction.transaction_date, transaction.id)


def _group_order(group: list[Transaction]):
    return (min(t.transaction_date for t in group), min(t.id for t in group))


def evaluate_group(group: Sequence[Transaction], candidate: Transaction, rule: MatchRule) -> MatchEvaluation:
    """Evaluate a candidate against every group member.

    The candidate's score is its weakest pairwise score.
    """
    score = None
    for member in group:
        evaluation = evaluate(member, candidate, rule)
        if not evaluation.is_candidate:
            return evaluation
        score = evaluation.score if score is None else min(score, evaluation.score)
    return MatchEvaluation(True, score or 0.0)


def build_groups(pools: Sequence[Sequence[Transaction]], rule: MatchRule) -> GroupingResult:
    """Greedily group transactions across an ordered chain of pools.

    Pure; does not touch the database.

    Args:
        pools: Unmatched transactions per data source, in chain order
        rule: Rule snapshot

    Returns:
        GroupingResult with groups of two or more and the leftovers
    """
    ordered = [sorted(pool, key=_transaction_order) for pool in pools]
    groups: list[list[Transaction]] = [[t] for t in ordered[0]] if ordered else []

    # Furthest criterion each transaction reached against any partner
    furthest: dict[int, int] = {}
    # Transactions that had a passing partner which went elsewhere
    outbid: set[int] = set()

    def note_failure(transactions: Sequence[Transaction], criterion: Criterion) -> None:
        position = _CRITERION_ORDER.index(criterion)
        for t in transactions:
            if furthest.get(t.id, -1) < position:
                furthest[t.id] = position

    for pool in ordered[1:]:
        consumed: set[int] = set()
        groups.sort(key=_group_order)
        for group in groups:
            best = None
            best_score = 0.0
            for candidate in pool:
                evaluation = evaluate_group(group, candidate, rule)
                if not evaluation.is_candidate:
                    note_failure([*group, candidate], evaluation.failed_criterion)
                    continue
                if candidate.id in consumed:
                    outbid.update(t.id for t in group)
                    continue
                if best is None or evaluation.score > best_score:
                    if best is not None:
                        outbid.add(best.id)
                    best = candidate
                    best_score = evaluation.score
                else:
                    outbid.add(candidate.id)
            if best is not None:
                group.append(best)
                consumed.add(best.id)
        groups.extend([t] for t in pool if t.id not in consumed)

    result = GroupingResult()
    non_empty_pools = sum(1 for pool in ordered if pool)
    for group in groups:
        if len(group) > 1:
            result.groups.append(group)
            continue
        transaction = group[0]
        result.unmatched.append(transaction)
        if non_empty_pools < 2:
            reason = NO_OTHER_TRANSACTIONS
        elif transaction.id in outbid:
            reason = CANDIDATES_TAKEN
        elif transaction.id in furthest:
            reason = _criterion_reason(_CRITERION_ORDER[furthest[transaction.id]], rule)
        else:
            reason = NO_OTHER_TRANSACTIONS
        result.reasons[transaction.id] = reason
    result.groups.sort(key=_group_order)
    return result


class MatchingService:
    """Service for match sets, reconciliation runs and manual matches."""

    def __init__(self, db: Database, authorizer: Optional[Authorizer] = None):
        """Initialize matching service.

        Args:
            db: Database instance
            authorizer: Permission source; defaults to role assignments in db
        """
        self.db = db
        self.authorizer = authorizer or RoleAuthorizer(db)

    # Match sets
    def create_match_set(
        self,
        tenant_id: str,
        name: str,
        rule_id: int,
        description: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> int:
        """Create a match set.

        Returns:
            Match set ID

        Raises:
            ValidationError: If the name is blank
            ConflictError: If the name is taken in the tenant
            NotFoundError: If the rule does not exist in the tenant
        """
        if not name or not name.strip():
            raise ValidationError("Match set name is required")
        name = name.strip()
        if self.db.get_match_rule(rule_id, tenant_id) is None:
            raise NotFoundError(not_found("Match rule", rule_id))
        if any(m.name == name for m in self.db.list_match_sets(tenant_id)):
            raise ConflictError(f"Match set with name '{name}' already exists")

        match_set_id = self.db.create_match_set(
            tenant_id=tenant_id,
            name=name,
            rule_id=rule_id,
            description=description,
            created_by=created_by,
        )
        logger.info("Created match set %s (%s) in tenant %s", match_set_id, name, tenant_id)
        return match_set_id

    def get_match_set(self, match_set_id: int, tenant_id: str) -> MatchSet:
        match_set = self.db.get_match_set(match_set_id, tenant_id)
        if match_set is None:
            raise NotFoundError(not_found("Match set", match_set_id))
        return match_set

    def list_match_sets(self, tenant_id: str) -> list[MatchSet]:
        return self.db.list_match_sets(tenant_id)

    def add_data_source(self, match_set_id: int, data_source_id: int, tenant_id: str) -> None:
        """Attach a data source. Attachment order is the grouping chain order."""
        match_set = self.get_match_set(match_set_id, tenant_id)
        if self.db.get_data_source(data_source_id, tenant_id) is None:
            raise NotFoundError(not_found("Data source", data_source_id))
        if match_set.run_status == RunStatus.RUNNING:
            raise ConflictError(run_already_in_progress(match_set_id))
        self.db.add_match_set_data_source(match_set_id, data_source_id, tenant_id)

    def remove_data_source(self, match_set_id: int, data_source_id: int, tenant_id: str) -> None:
        match_set = self.get_match_set(match_set_id, tenant_id)
        if match_set.run_status == RunStatus.RUNNING:
            raise ConflictError(run_already_in_progress(match_set_id))
        if not self.db.remove_match_set_data_source(match_set_id, data_source_id):
            raise NotFoundError(f"Data source {data_source_id} is not part of match set {match_set_id}")

    def get_match_set_data_sources(self, match_set_id: int, tenant_id: str) -> list[DataSource]:
        self.get_match_set(match_set_id, tenant_id)
        return self.db.get_match_set_data_sources(match_set_id, tenant_id)

    # Runs
    def run_match_set(self, match_set_id: int, tenant_id: str, user_id: str) -> RunSummary:
        """Run automatic matching for a match set.

        Every precondition is checked before the run lock is taken, so a
        rejected run leaves no trace. A second start while a run is in
        progress fails fast.

        Args:
            match_set_id: Match set to run
            tenant_id: Owning tenant
            user_id: Acting user, needs match:transactions

        Returns:
            RunSummary of the completed run

        Raises:
            PermissionDeniedError: If the user may not match
            NotFoundError: If the match set or its rule does not exist
            ValidationError: If the rule is unusable or fewer than two data
                sources are attached
            ConflictError: If a run is already in progress
            RunAbortedError: If the run was aborted before it completed
        """
        require_permission(self.authorizer, user_id, Permission.MATCH_TRANSACTIONS, tenant_id)
        match_set = self.get_match_set(match_set_id, tenant_id)
        rule = self.db.get_match_rule(match_set.rule_id, tenant_id)
        if rule is None:
            raise NotFoundError(not_found("Match rule", match_set.rule_id))
        ensure_rule_usable(rule)
        data_sources = self.db.get_match_set_data_sources(match_set_id, tenant_id)
        if len(data_sources) < 2:
            raise ValidationError(f"Match set {match_set_id} needs at least two data sources")

        run = self.db.begin_match_run(match_set_id, tenant_id, user_id)
        if run is None:
            raise ConflictError(run_already_in_progress(match_set_id))
        logger.info("Started run %s for match set %s", run.id, match_set_id)

        try:
            summary = self._execute_run(run, match_set, rule, data_sources)
        except RunAbortedError as e:
            logger.warning("Run %s for match set %s was aborted while writing", run.id, match_set_id)
            raise RunAbortedError(run_aborted(run.id, match_set_id)) from e
        except Exception as e:
            removed = self.db.fail_match_run(run.id, tenant_id, str(e))
            logger.exception(
                "Run %s for match set %s failed; rolled back %d matches", run.id, match_set_id, removed or 0
            )
            raise

        if not self.db.finish_match_run(
            run.id,
            RunStatus.COMPLETED,
            group_count=summary.group_count,
            matched_count=summary.matched_count,
            unmatched_count=summary.unmatched_count,
        ):
            # Aborted after its last write; the abort already undid its matches
            logger.warning("Run %s for match set %s was aborted before it finished", run.id, match_set_id)
            raise RunAbortedError(run_aborted(run.id, match_set_id))

        logger.info(
            "Finished run %s for match set %s: %d groups, %d matched, %d unmatched",
            run.id,
            match_set_id,
            summary.group_count,
            summary.matched_count,
            summary.unmatched_count,
        )
        return summary

    def _execute_run(
        self, run: MatchRun, match_set: MatchSet, rule: MatchRule, data_sources: list[DataSource]
    ) -> RunSummary:
        tenant_id = match_set.tenant_id
        pools = [
            self.db.list_transactions(tenant_id, [source.id], status=TransactionStatus.UNMATCHED)
            for source in data_sources
        ]
        plan = build_groups(pools, rule)

        match_ids = []
        matched_count = 0
        conflicted: list[Transaction] = []
        for group in plan.groups:
            try:
                match = self.db.create_match_group(
                    tenant_id=tenant_id,
                    match_set_id=match_set.id,
                    transaction_ids=[t.id for t in group],
                    match_type=MatchType.AUTOMATIC,
                    matched_by=run.started_by,
                    match_rule_id=rule.id,
                    run_id=run.id,
                )
            except RunAbortedError:
                raise
            except ConflictError as e:
                logger.warning("Run %s skipped a group: %s", run.id, e)
                conflicted.extend(group)
                continue
            match_ids.append(match.id)
            matched_count += len(group)

        entries = [(t.id, plan.reasons[t.id]) for t in plan.unmatched]
        if conflicted:
            # Members a concurrent writer did not take are still unmatched
            current = self.db.get_transactions([t.id for t in conflicted], tenant_id)
            entries.extend(
                (t.id, CANDIDATES_TAKEN) for t in current if t.status == TransactionStatus.UNMATCHED
            )
        self.db.replace_unmatched_transactions(match_set.id, tenant_id, run.id, entries)

        return RunSummary(
            run_id=run.id,
            match_set_id=match_set.id,
            status=RunStatus.COMPLETED,
            group_count=len(match_ids),
            matched_count=matched_count,
            unmatched_count=len(entries),
            conflict_count=len(plan.groups) - len(match_ids),
            match_ids=tuple(match_ids),
        )

    def abort_run(self, match_set_id: int, tenant_id: str, reason: str = "aborted") -> MatchRun:
        """Fail the match set's current run and roll back its matches.

        For callers that enforce their own timeout on a run.

        Raises:
            ConflictError: If no run is in progress
        """
        match_set = self.get_match_set(match_set_id, tenant_id)
        if match_set.run_status != RunStatus.RUNNING or match_set.current_run_id is None:
            raise ConflictError(f"No run in progress for match set {match_set_id}")

        run_id = match_set.current_run_id
        removed = self.db.fail_match_run(run_id, tenant_id, reason)
        if removed is None:
            raise ConflictError(f"No run in progress for match set {match_set_id}")
        logger.warning("Aborted run %s for match set %s (%s); rolled back %d matches", run_id, match_set_id, reason, removed)
        return self.db.get_match_run(run_id, tenant_id)

    def get_match_set_status(self, match_set_id: int, tenant_id: str, user_id: str) -> MatchSetStatus:
        """Summarize a match set's transactions and its latest run."""
        require_permission(self.authorizer, user_id, Permission.VIEW_MATCHSET, tenant_id)
        match_set = self.get_match_set(match_set_id, tenant_id)
        data_sources = self.db.get_match_set_data_sources(match_set_id, tenant_id)
        source_ids = [s.id for s in data_sources]

        last_run = None
        if match_set.current_run_id is not None:
            last_run = self.db.get_match_run(match_set.current_run_id, tenant_id)

        return MatchSetStatus(
            match_set_id=match_set.id,
            name=match_set.name,
            status=match_set.run_status,
            data_sources=data_sources,
            total_transactions=self.db.count_transactions(tenant_id, source_ids),
            matched_count=self.db.count_matched_transactions(match_set_id, tenant_id),
            unmatched_count=self.db.count_transactions(
                tenant_id, source_ids, status=TransactionStatus.UNMATCHED
            ),
            last_run=last_run,
        )

    def list_runs(self, match_set_id: int, tenant_id: str) -> list[MatchRun]:
        self.get_match_set(match_set_id, tenant_id)
        return self.db.list_match_runs(match_set_id, tenant_id)

    def list_unmatched(self, match_set_id: int, tenant_id: str) -> list[UnmatchedTransaction]:
        self.get_match_set(match_set_id, tenant_id)
        return self.db.list_unmatched_transactions(match_set_id, tenant_id)

    # Manual matches
    def create_manual_match(
        self, transaction_ids: Sequence[int], match_set_id: int, tenant_id: str, user_id: str
    ) -> TransactionMatch:
        """Group explicitly chosen transactions into a Pending manual match.

        Args:
            transaction_ids: Two or more transactions from at least two data sources
            match_set_id: Match set the transactions' data sources belong to
            tenant_id: Owning tenant
            user_id: Acting user, needs match:transactions

        Raises:
            PermissionDeniedError: If the user may not match
            ValidationError: If fewer than two transactions or data sources are
                given, or a data source is not part of the match set
            NotFoundError: If a transaction does not exist in the tenant
            ConflictError: If a transaction is already matched
        """
        require_permission(self.authorizer, user_id, Permission.MATCH_TRANSACTIONS, tenant_id)
        ids = list(dict.fromkeys(transaction_ids))
        if len(ids) < 2:
            raise ValidationError("A manual match needs at least two distinct transactions")
        self.get_match_set(match_set_id, tenant_id)

        transactions = self.db.get_transactions(ids, tenant_id)
        found = {t.id for t in transactions}
        missing = [tid for tid in ids if tid not in found]
        if missing:
            raise NotFoundError(not_found("Transaction", missing[0]))

        source_ids = {t.data_source_id for t in transactions}
        if len(source_ids) < 2:
            raise ValidationError("A manual match must span at least two data sources")
        attached = {s.id for s in self.db.get_match_set_data_sources(match_set_id, tenant_id)}
        foreign = sorted(source_ids - attached)
        if foreign:
            raise ValidationError(
                f"Data source {foreign[0]} is not part of match set {match_set_id}"
            )

        already_matched = [t.id for t in transactions if t.status == TransactionStatus.MATCHED]
        if already_matched:
            raise ConflictError(transactions_already_matched(already_matched))

        match = self.db.create_match_group(
            tenant_id=tenant_id,
            match_set_id=match_set_id,
            transaction_ids=ids,
            match_type=MatchType.MANUAL,
            matched_by=user_id,
        )
        logger.info("User %s created manual match %s over %s", user_id, match.id, ids)
        return match
