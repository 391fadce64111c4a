"""Tests for match approval and rejection."""

import pytest

from reconciler.domain.entities import MatchStatus, MatchType, TransactionStatus
from reconciler.domain.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

from conftest import APPROVER, OTHER_TENANT, PREPARER, TENANT


@pytest.fixture
def pending_match(matching_service, sample_match_set, bank_source, ledger_source, add_transaction):
    """Automatic Pending match over one bank and one ledger transaction."""
    add_transaction(bank_source.id, "-100.00", "2024-01-05")
    add_transaction(ledger_source.id, "100.00", "2024-01-06")
    summary = matching_service.run_match_set(sample_match_set.id, TENANT, PREPARER)
    return summary.match_ids[0]


def test_approve_match(approval_service, pending_match):
    match = approval_service.approve_match(pending_match, TENANT, APPROVER)

    assert match.match_status == MatchStatus.APPROVED
    assert match.approved_by == APPROVER
    assert match.approval_date is not None


def test_approve_keeps_transactions_matched(approval_service, pending_match, temp_db):
    approval_service.approve_match(pending_match, TENANT, APPROVER)

    _, transactions = approval_service.get_match_details(pending_match, TENANT)
    assert len(transactions) == 2
    assert all(t.status == TransactionStatus.MATCHED for t in transactions)


def test_approved_match_is_final(approval_service, pending_match):
    approval_service.approve_match(pending_match, TENANT, APPROVER)

    with pytest.raises(ConflictError, match="already Approved"):
        approval_service.approve_match(pending_match, TENANT, APPROVER)
    with pytest.raises(ConflictError):
        approval_service.reject_match(pending_match, TENANT, APPROVER, "changed my mind")


def test_rejected_match_is_final(approval_service, pending_match):
    approval_service.reject_match(pending_match, TENANT, APPROVER, "duplicate")

    with pytest.raises(ConflictError, match="already Rejected"):
        approval_service.approve_match(pending_match, TENANT, APPROVER)


def test_reject_records_reason_and_releases_members(approval_service, pending_match, temp_db):
    members = temp_db.get_match_transactions(pending_match, TENANT)

    match = approval_service.reject_match(pending_match, TENANT, APPROVER, "  wrong vendor ")

    assert match.match_status == MatchStatus.REJECTED
    assert match.rejection_reason == "wrong vendor"
    assert approval_service.get_match_details(pending_match, TENANT)[1] == []
    released = temp_db.get_transactions([t.id for t in members], TENANT)
    assert all(t.status == TransactionStatus.UNMATCHED for t in released)


def test_blank_reason_leaves_match_pending(approval_service, pending_match):
    with pytest.raises(ValidationError):
        approval_service.reject_match(pending_match, TENANT, APPROVER, "   ")

    match, transactions = approval_service.get_match_details(pending_match, TENANT)
    assert match.match_status == MatchStatus.PENDING
    assert len(transactions) == 2


def test_rejected_transactions_are_matched_again(
    approval_service, matching_service, sample_match_set, pending_match
):
    approval_service.reject_match(pending_match, TENANT, APPROVER, "check again")

    summary = matching_service.run_match_set(sample_match_set.id, TENANT, PREPARER)

    assert summary.group_count == 1
    assert summary.match_ids[0] != pending_match


def test_preparer_cannot_approve(approval_service, pending_match):
    with pytest.raises(PermissionDeniedError):
        approval_service.approve_match(pending_match, TENANT, PREPARER)
    with pytest.raises(PermissionDeniedError):
        approval_service.reject_match(pending_match, TENANT, PREPARER, "nope")


def test_other_tenant_cannot_see_match(approval_service, authorizer, pending_match):
    authorizer.assign_role(APPROVER, OTHER_TENANT, "approver")

    with pytest.raises(NotFoundError):
        approval_service.approve_match(pending_match, OTHER_TENANT, APPROVER)
    with pytest.raises(NotFoundError):
        approval_service.get_match_details(pending_match, OTHER_TENANT)


def test_unknown_match(approval_service):
    with pytest.raises(NotFoundError):
        approval_service.approve_match(4242, TENANT, APPROVER)


class TestSearchMatches:
    @pytest.fixture
    def three_matches(self, matching_service, sample_match_set, bank_source, ledger_source, add_transaction):
        match_ids = []
        for day in (5, 10, 15):
            bank_id = add_transaction(bank_source.id, "-10.00", f"2024-01-{day:02d}")
            ledger_id = add_transaction(ledger_source.id, "10.00", f"2024-01-{day:02d}")
            match = matching_service.create_manual_match(
                [bank_id, ledger_id], sample_match_set.id, TENANT, PREPARER
            )
            match_ids.append(match.id)
        return match_ids

    def test_newest_first_with_pagination(self, approval_service, three_matches):
        page, total = approval_service.search_matches(TENANT, limit=2)
        assert total == 3
        assert [m.id for m in page] == [three_matches[2], three_matches[1]]

        page, total = approval_service.search_matches(TENANT, limit=2, offset=2)
        assert total == 3
        assert [m.id for m in page] == [three_matches[0]]

    def test_filters(self, approval_service, three_matches):
        approval_service.approve_match(three_matches[0], TENANT, APPROVER)

        approved, total = approval_service.search_matches(TENANT, status="Approved")
        assert total == 1
        assert approved[0].id == three_matches[0]

        _, manual_total = approval_service.search_matches(TENANT, match_type=MatchType.MANUAL)
        assert manual_total == 3
        _, automatic_total = approval_service.search_matches(TENANT, match_type="Automatic")
        assert automatic_total == 0
        _, by_approver = approval_service.search_matches(TENANT, approved_by=APPROVER)
        assert by_approver == 1

    def test_list_pending(self, approval_service, three_matches):
        approval_service.reject_match(three_matches[1], TENANT, APPROVER, "no")

        pending, total = approval_service.list_pending(TENANT)
        assert total == 2
        assert {m.id for m in pending} == {three_matches[0], three_matches[2]}

    def test_invalid_filter(self, approval_service):
        with pytest.raises(ValidationError):
            approval_service.search_matches(TENANT, status="Maybe")

    def test_invalid_page(self, approval_service):
        with pytest.raises(ValidationError):
            approval_service.search_matches(TENANT, limit=0)

    def test_other_tenant_sees_nothing(self, approval_service, three_matches):
        assert approval_service.search_matches(OTHER_TENANT) == ([], 0)
