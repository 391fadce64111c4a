"""Tests for greedy grouping and the matching service."""

import pytest
from datetime import date, datetime, timedelta, UTC
from decimal import Decimal

from reconciler.domain.entities import (
    MatchRule,
    MatchStatus,
    MatchType,
    RunStatus,
    Transaction,
    TransactionStatus,
)
from reconciler.domain.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    RunAbortedError,
    ValidationError,
)
from reconciler.domain.matching import CANDIDATES_TAKEN, NO_OTHER_TRANSACTIONS, build_groups

from conftest import APPROVER, OTHER_TENANT, PREPARER, TENANT

JAN_5 = date(2024, 1, 5)


def txn(txn_id, amount, day=5, reference=None, data_source_id=1):
    return Transaction(
        id=txn_id,
        tenant_id=TENANT,
        data_source_id=data_source_id,
        import_id=None,
        transaction_date=date(2024, 1, day),
        post_date=date(2024, 1, day),
        description=None,
        reference=reference,
        amount=Decimal(str(amount)),
        currency="USD",
        status=TransactionStatus.UNMATCHED,
        created_by=None,
        created_at=datetime.now(UTC),
    )


def rule(amount=True, by_date=True, tolerance=2, reference=False):
    return MatchRule(
        id=1,
        tenant_id=TENANT,
        name="rule",
        description=None,
        match_by_amount=amount,
        match_by_date=by_date,
        date_tolerance_days=tolerance,
        match_by_reference=reference,
        active=True,
        created_by=None,
        created_at=datetime.now(UTC),
    )


def ids(groups):
    return [[t.id for t in group] for group in groups]


class TestBuildGroups:
    def test_offsetting_pair(self):
        result = build_groups([[txn(1, -100)], [txn(2, 100, day=6)]], rule())
        assert ids(result.groups) == [[1, 2]]
        assert result.unmatched == []

    def test_tie_goes_to_earlier_candidate(self):
        pools = [[txn(1, -100)], [txn(2, 100, day=6), txn(3, 100, day=6)]]
        result = build_groups(pools, rule())
        assert ids(result.groups) == [[1, 2]]
        assert [t.id for t in result.unmatched] == [3]
        assert result.reasons[3] == CANDIDATES_TAKEN

    def test_closest_date_wins(self):
        pools = [[txn(1, -100)], [txn(2, 100, day=4), txn(3, 100, day=5)]]
        result = build_groups(pools, rule())
        assert ids(result.groups) == [[1, 3]]
        assert result.reasons[2] == CANDIDATES_TAKEN

    def test_chain_across_three_pools(self):
        """Leftovers of one pool seed groups for the next."""
        pools = [
            [txn(1, -100)],
            [txn(2, 100), txn(3, 50, day=6)],
            [txn(4, -50, day=6)],
        ]
        result = build_groups(pools, rule())
        assert ids(result.groups) == [[1, 2], [3, 4]]
        assert result.unmatched == []

    def test_three_way_group_by_reference(self):
        pools = [
            [txn(1, -100, reference="INV-9")],
            [txn(2, 60, reference="INV-9")],
            [txn(3, 40, reference="inv-9")],
        ]
        result = build_groups(pools, rule(amount=False, by_date=False, reference=True))
        assert ids(result.groups) == [[1, 2, 3]]

    def test_candidate_must_pass_every_member(self):
        pools = [
            [txn(1, -100, day=1)],
            [txn(2, 100, day=3)],
            [txn(3, 100, day=5)],
        ]
        result = build_groups(pools, rule(amount=False, by_date=True, tolerance=2))
        assert ids(result.groups) == [[1, 2]]
        assert [t.id for t in result.unmatched] == [3]

    def test_groups_sorted_by_earliest_date(self):
        pools = [[txn(1, -10, day=20), txn(2, -20, day=3)], [txn(3, 10, day=20), txn(4, 20, day=3)]]
        result = build_groups(pools, rule())
        assert ids(result.groups) == [[2, 4], [1, 3]]

    def test_reason_for_date_outside_tolerance(self):
        result = build_groups([[txn(1, -100)], [txn(2, 100, day=20)]], rule())
        assert result.reasons == {
            1: "no candidate within date tolerance of 2 days",
            2: "no candidate within date tolerance of 2 days",
        }

    def test_reason_for_amount_mismatch(self):
        result = build_groups([[txn(1, -100)], [txn(2, 50)]], rule())
        assert "offsetting amount" in result.reasons[1]

    def test_reason_when_other_pools_are_empty(self):
        result = build_groups([[txn(1, -100)], []], rule())
        assert result.reasons == {1: NO_OTHER_TRANSACTIONS}

    def test_no_pools(self):
        result = build_groups([], rule())
        assert result.groups == []
        assert result.unmatched == []


class TestRunMatchSet:
    def test_reject_releases_transactions(
        self, matching_service, approval_service, sample_match_set, bank_source, ledger_source, add_transaction, temp_db
    ):
        """Pending pair is written by the run; rejecting it unmatches both sides."""
        bank_id = add_transaction(bank_source.id, "-100.00", "2024-01-05")
        ledger_id = add_transaction(ledger_source.id, "100.00", "2024-01-06")

        summary = matching_service.run_match_set(sample_match_set.id, TENANT, PREPARER)

        assert summary.status == RunStatus.COMPLETED
        assert summary.group_count == 1
        assert summary.matched_count == 2
        assert summary.unmatched_count == 0

        match = temp_db.get_match(summary.match_ids[0], TENANT)
        assert match.match_status == MatchStatus.PENDING
        assert match.match_type == MatchType.AUTOMATIC
        assert match.matched_by == PREPARER
        assert {t.status for t in temp_db.get_transactions([bank_id, ledger_id], TENANT)} == {
            TransactionStatus.MATCHED
        }
        status = matching_service.get_match_set_status(sample_match_set.id, TENANT, PREPARER)
        assert status.matched_count == 2
        assert status.unmatched_count == 0

        approval_service.reject_match(match.id, TENANT, APPROVER, "wrong vendor")

        assert {t.status for t in temp_db.get_transactions([bank_id, ledger_id], TENANT)} == {
            TransactionStatus.UNMATCHED
        }

    def test_rerun_only_considers_unmatched(
        self, matching_service, sample_match_set, bank_source, ledger_source, add_transaction
    ):
        add_transaction(bank_source.id, "-100.00", "2024-01-05")
        add_transaction(ledger_source.id, "100.00", "2024-01-06")
        add_transaction(ledger_source.id, "12.00", "2024-01-20")

        first = matching_service.run_match_set(sample_match_set.id, TENANT, PREPARER)
        second = matching_service.run_match_set(sample_match_set.id, TENANT, PREPARER)

        assert first.group_count == 1
        assert second.group_count == 0
        assert second.matched_count == 0
        assert second.unmatched_count == 1
        assert second.run_id != first.run_id

    def test_unmatched_reasons_are_recorded(
        self, matching_service, sample_match_set, bank_source, ledger_source, add_transaction
    ):
        add_transaction(bank_source.id, "-100.00", "2024-01-05")
        lonely = add_transaction(ledger_source.id, "100.00", "2024-01-25")

        summary = matching_service.run_match_set(sample_match_set.id, TENANT, PREPARER)
        unmatched = matching_service.list_unmatched(sample_match_set.id, TENANT)

        assert summary.unmatched_count == 2
        reasons = {u.transaction_id: u.reason for u in unmatched}
        assert reasons[lonely] == "no candidate within date tolerance of 2 days"
        assert all(u.run_id == summary.run_id for u in unmatched)

    def test_second_run_while_running_conflicts(self, matching_service, sample_match_set, temp_db):
        temp_db.begin_match_run(sample_match_set.id, TENANT, PREPARER)

        with pytest.raises(ConflictError, match="already in progress"):
            matching_service.run_match_set(sample_match_set.id, TENANT, PREPARER)

    def test_needs_two_data_sources(self, matching_service, sample_rule, bank_source):
        match_set_id = matching_service.create_match_set(TENANT, "Bank only", sample_rule.id)
        matching_service.add_data_source(match_set_id, bank_source.id, TENANT)

        with pytest.raises(ValidationError, match="two data sources"):
            matching_service.run_match_set(match_set_id, TENANT, PREPARER)

        match_set = matching_service.get_match_set(match_set_id, TENANT)
        assert match_set.run_status == RunStatus.IDLE
        assert matching_service.list_runs(match_set_id, TENANT) == []

    def test_rule_without_criteria_is_refused(
        self, matching_service, rule_service, bank_source, ledger_source
    ):
        rule_id = rule_service.create_rule(TENANT, "Anything goes")
        match_set_id = matching_service.create_match_set(TENANT, "Loose", rule_id)
        matching_service.add_data_source(match_set_id, bank_source.id, TENANT)
        matching_service.add_data_source(match_set_id, ledger_source.id, TENANT)

        with pytest.raises(ValidationError, match="no active criteria"):
            matching_service.run_match_set(match_set_id, TENANT, PREPARER)
        assert matching_service.get_match_set(match_set_id, TENANT).run_status == RunStatus.IDLE

    def test_approver_cannot_run(self, matching_service, sample_match_set):
        with pytest.raises(PermissionDeniedError):
            matching_service.run_match_set(sample_match_set.id, TENANT, APPROVER)

    def test_unknown_user_cannot_run(self, matching_service, sample_match_set):
        with pytest.raises(PermissionDeniedError):
            matching_service.run_match_set(sample_match_set.id, TENANT, "mallory")

    def test_failure_rolls_back_and_releases_lock(
        self, matching_service, sample_match_set, bank_source, ledger_source, add_transaction, temp_db, monkeypatch
    ):
        bank_id = add_transaction(bank_source.id, "-100.00", "2024-01-05")
        ledger_id = add_transaction(ledger_source.id, "100.00", "2024-01-06")

        def explode(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(temp_db, "replace_unmatched_transactions", explode)
        with pytest.raises(RuntimeError, match="disk full"):
            matching_service.run_match_set(sample_match_set.id, TENANT, PREPARER)
        monkeypatch.undo()

        match_set = matching_service.get_match_set(sample_match_set.id, TENANT)
        assert match_set.run_status == RunStatus.FAILED
        run = matching_service.list_runs(sample_match_set.id, TENANT)[0]
        assert run.status == RunStatus.FAILED
        assert run.error_message == "disk full"
        assert {t.status for t in temp_db.get_transactions([bank_id, ledger_id], TENANT)} == {
            TransactionStatus.UNMATCHED
        }
        assert temp_db.search_matches(TENANT)[1] == 0

        retry = matching_service.run_match_set(sample_match_set.id, TENANT, PREPARER)
        assert retry.group_count == 1

    def test_tenants_are_isolated(self, matching_service, sample_match_set):
        with pytest.raises(NotFoundError):
            matching_service.get_match_set(sample_match_set.id, OTHER_TENANT)
        assert matching_service.list_match_sets(OTHER_TENANT) == []


class TestAbortRun:
    def test_abort_fails_run_and_rolls_back(
        self, matching_service, sample_match_set, bank_source, ledger_source, add_transaction, temp_db
    ):
        bank_id = add_transaction(bank_source.id, "-100.00", "2024-01-05")
        ledger_id = add_transaction(ledger_source.id, "100.00", "2024-01-05")
        run = temp_db.begin_match_run(sample_match_set.id, TENANT, PREPARER)
        temp_db.create_match_group(
            tenant_id=TENANT,
            match_set_id=sample_match_set.id,
            transaction_ids=[bank_id, ledger_id],
            match_type=MatchType.AUTOMATIC,
            matched_by=PREPARER,
            run_id=run.id,
        )

        aborted = matching_service.abort_run(sample_match_set.id, TENANT, reason="timed out")

        assert aborted.status == RunStatus.FAILED
        assert aborted.error_message == "timed out"
        assert matching_service.get_match_set(sample_match_set.id, TENANT).run_status == RunStatus.FAILED
        assert {t.status for t in temp_db.get_transactions([bank_id, ledger_id], TENANT)} == {
            TransactionStatus.UNMATCHED
        }
        # A late finish from the aborted run changes nothing
        assert temp_db.finish_match_run(run.id, RunStatus.COMPLETED) is False

    def test_aborted_run_leaves_next_run_intact(
        self,
        matching_service,
        sample_match_set,
        bank_source,
        ledger_source,
        add_transaction,
        temp_db,
        monkeypatch,
    ):
        bank_id = add_transaction(bank_source.id, "-100.00", "2024-01-05")
        ledger_id = add_transaction(ledger_source.id, "100.00", "2024-01-05")
        lone_id = add_transaction(bank_source.id, "-55.00", "2024-01-20")
        replace_unmatched = temp_db.replace_unmatched_transactions
        calls = []
        reruns = []

        def abort_then_rerun(match_set_id, tenant_id, run_id, entries):
            # The first run times out just before recording its leftovers
            calls.append(run_id)
            if len(calls) == 1:
                matching_service.abort_run(match_set_id, tenant_id, reason="timed out")
                reruns.append(matching_service.run_match_set(match_set_id, tenant_id, PREPARER))
            return replace_unmatched(match_set_id, tenant_id, run_id, entries)

        monkeypatch.setattr(temp_db, "replace_unmatched_transactions", abort_then_rerun)

        with pytest.raises(RunAbortedError, match="was aborted"):
            matching_service.run_match_set(sample_match_set.id, TENANT, PREPARER)

        rerun = reruns[0]
        assert rerun.status == RunStatus.COMPLETED
        assert rerun.group_count == 1
        assert [(u.transaction_id, u.run_id) for u in matching_service.list_unmatched(sample_match_set.id, TENANT)] == [
            (lone_id, rerun.run_id)
        ]
        statuses = {t.id: t.status for t in temp_db.get_transactions([bank_id, ledger_id, lone_id], TENANT)}
        assert statuses == {
            bank_id: TransactionStatus.MATCHED,
            ledger_id: TransactionStatus.MATCHED,
            lone_id: TransactionStatus.UNMATCHED,
        }
        assert [r.status for r in matching_service.list_runs(sample_match_set.id, TENANT)] == [
            RunStatus.COMPLETED,
            RunStatus.FAILED,
        ]
        assert matching_service.get_match_set(sample_match_set.id, TENANT).run_status == RunStatus.COMPLETED

    def test_abort_without_run(self, matching_service, sample_match_set):
        with pytest.raises(ConflictError, match="No run in progress"):
            matching_service.abort_run(sample_match_set.id, TENANT)


class TestMatchSetManagement:
    def test_duplicate_name(self, matching_service, sample_match_set, sample_rule):
        with pytest.raises(ConflictError):
            matching_service.create_match_set(TENANT, "Bank vs Ledger", sample_rule.id)

    def test_unknown_rule(self, matching_service):
        with pytest.raises(NotFoundError):
            matching_service.create_match_set(TENANT, "Orphan", 999)

    def test_data_sources_keep_attachment_order(self, matching_service, sample_match_set, bank_source, ledger_source):
        sources = matching_service.get_match_set_data_sources(sample_match_set.id, TENANT)
        assert [s.id for s in sources] == [bank_source.id, ledger_source.id]

    def test_cannot_change_sources_while_running(
        self, matching_service, sample_match_set, ledger_source, schema_service, temp_db
    ):
        extra_id = schema_service.create_data_source(TENANT, "Card Feed")
        temp_db.begin_match_run(sample_match_set.id, TENANT, PREPARER)

        with pytest.raises(ConflictError):
            matching_service.add_data_source(sample_match_set.id, extra_id, TENANT)
        with pytest.raises(ConflictError):
            matching_service.remove_data_source(sample_match_set.id, ledger_source.id, TENANT)

    def test_status_summary(
        self, matching_service, sample_match_set, bank_source, ledger_source, add_transaction
    ):
        add_transaction(bank_source.id, "-100.00", "2024-01-05")
        add_transaction(ledger_source.id, "100.00", "2024-01-06")
        add_transaction(ledger_source.id, "12.00", "2024-01-20")
        summary = matching_service.run_match_set(sample_match_set.id, TENANT, PREPARER)

        status = matching_service.get_match_set_status(sample_match_set.id, TENANT, APPROVER)

        assert status.status == RunStatus.COMPLETED
        assert status.total_transactions == 3
        assert status.matched_count == 2
        assert status.unmatched_count == 1
        assert status.last_run.id == summary.run_id
        assert len(status.data_sources) == 2


class TestManualMatch:
    def test_creates_pending_manual_match(
        self, matching_service, sample_match_set, bank_source, ledger_source, add_transaction, temp_db
    ):
        bank_id = add_transaction(bank_source.id, "-100.00", "2024-01-05")
        ledger_id = add_transaction(ledger_source.id, "99.00", "2024-03-01")

        match = matching_service.create_manual_match([bank_id, ledger_id], sample_match_set.id, TENANT, PREPARER)

        assert match.match_type == MatchType.MANUAL
        assert match.match_status == MatchStatus.PENDING
        assert match.match_rule_id is None
        assert {t.id for t in temp_db.get_match_transactions(match.id, TENANT)} == {bank_id, ledger_id}

    def test_needs_two_transactions(self, matching_service, sample_match_set, bank_source, add_transaction):
        bank_id = add_transaction(bank_source.id, "-100.00", "2024-01-05")
        with pytest.raises(ValidationError):
            matching_service.create_manual_match([bank_id, bank_id], sample_match_set.id, TENANT, PREPARER)

    def test_needs_two_data_sources(self, matching_service, sample_match_set, bank_source, add_transaction):
        first = add_transaction(bank_source.id, "-100.00", "2024-01-05")
        second = add_transaction(bank_source.id, "100.00", "2024-01-05")
        with pytest.raises(ValidationError, match="two data sources"):
            matching_service.create_manual_match([first, second], sample_match_set.id, TENANT, PREPARER)

    def test_source_outside_match_set(
        self, matching_service, sample_match_set, bank_source, schema_service, add_transaction
    ):
        card_id = schema_service.create_data_source(TENANT, "Card Feed")
        first = add_transaction(bank_source.id, "-100.00", "2024-01-05")
        second = add_transaction(card_id, "100.00", "2024-01-05")
        with pytest.raises(ValidationError, match="not part of match set"):
            matching_service.create_manual_match([first, second], sample_match_set.id, TENANT, PREPARER)

    def test_unknown_or_foreign_transaction(
        self, matching_service, sample_match_set, bank_source, ledger_source, add_transaction
    ):
        first = add_transaction(bank_source.id, "-100.00", "2024-01-05")
        foreign = add_transaction(ledger_source.id, "100.00", "2024-01-05", tenant=OTHER_TENANT)
        with pytest.raises(NotFoundError):
            matching_service.create_manual_match([first, foreign], sample_match_set.id, TENANT, PREPARER)

    def test_already_matched(
        self, matching_service, sample_match_set, bank_source, ledger_source, add_transaction
    ):
        bank_id = add_transaction(bank_source.id, "-100.00", "2024-01-05")
        ledger_id = add_transaction(ledger_source.id, "100.00", "2024-01-05")
        other_id = add_transaction(ledger_source.id, "100.00", "2024-01-07")
        matching_service.create_manual_match([bank_id, ledger_id], sample_match_set.id, TENANT, PREPARER)

        with pytest.raises(ConflictError, match="already matched"):
            matching_service.create_manual_match([bank_id, other_id], sample_match_set.id, TENANT, PREPARER)

    def test_conflicting_group_write_leaves_nothing(
        self, sample_match_set, bank_source, ledger_source, add_transaction, temp_db
    ):
        bank_id = add_transaction(bank_source.id, "-100.00", "2024-01-05")
        ledger_id = add_transaction(ledger_source.id, "100.00", "2024-01-05")
        other_id = add_transaction(ledger_source.id, "100.00", "2024-01-07")
        temp_db.create_match_group(
            tenant_id=TENANT,
            match_set_id=sample_match_set.id,
            transaction_ids=[bank_id, ledger_id],
            match_type=MatchType.MANUAL,
            matched_by=PREPARER,
        )

        with pytest.raises(ConflictError):
            temp_db.create_match_group(
                tenant_id=TENANT,
                match_set_id=sample_match_set.id,
                transaction_ids=[other_id, bank_id],
                match_type=MatchType.MANUAL,
                matched_by=PREPARER,
            )

        assert temp_db.get_transaction(other_id, TENANT).status == TransactionStatus.UNMATCHED
        assert temp_db.search_matches(TENANT)[1] == 1

    def test_approver_cannot_create(self, matching_service, sample_match_set):
        with pytest.raises(PermissionDeniedError):
            matching_service.create_manual_match([1, 2], sample_match_set.id, TENANT, APPROVER)
