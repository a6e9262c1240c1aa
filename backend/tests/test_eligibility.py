from __future__ import annotations

import pytest

from muster.core.errors import IdentityNotFound
from muster.models.attendance import Attendance
from muster.models.enums import AttendanceStatus, EligibilityReason, ProposalStatus
from muster.models.rank import PromotionProposal
from muster.services.eligibility import check_rankup_eligibility, get_current_attendance


@pytest.fixture()
def ladder(factory):
    recruit = factory.rank("Recruit", 1)
    private = factory.rank("Private", 2, required=10)
    corporal = factory.rank("Corporal", 3, required=5, auto=True)
    return recruit, private, corporal


def test_unranked_participant(db, factory, ladder):
    user = factory.user("bishop")
    result = check_rankup_eligibility(db, user.id)
    assert result.reason == EligibilityReason.INELIGIBLE_NO_CURRENT_RANK
    assert result.eligible is False
    assert result.current_rank is None


def test_unknown_participant(db, ladder):
    with pytest.raises(IdentityNotFound):
        check_rankup_eligibility(db, 424242)


def test_retired_is_checked_before_interview(db, factory, ladder):
    recruit, _private, _corporal = ladder
    user = factory.user("bishop")
    factory.user_rank(user, recruit, retired=True, interview_done=False)
    assert check_rankup_eligibility(db, user.id).reason == EligibilityReason.INELIGIBLE_RETIRED


def test_interview_required(db, factory, ladder):
    recruit, _private, _corporal = ladder
    user = factory.user("bishop")
    factory.user_rank(user, recruit, interview_done=False)
    assert check_rankup_eligibility(db, user.id).reason == EligibilityReason.INELIGIBLE_INTERVIEW


def test_top_rank_has_no_next_rank(db, factory, ladder):
    _recruit, _private, corporal = ladder
    user = factory.user("bishop")
    factory.user_rank(user, corporal)
    result = check_rankup_eligibility(db, user.id)
    assert result.reason == EligibilityReason.INELIGIBLE_NO_NEXT_RANK
    assert result.current_rank.name == "Corporal"
    assert result.next_rank is None


def test_attendance_delta_boundary(db, factory, ladder):
    recruit, _private, _corporal = ladder
    user = factory.user("bishop")
    factory.user_rank(user, recruit, baseline=40)
    factory.attended(user, 47)

    result = check_rankup_eligibility(db, user.id)
    assert result.reason == EligibilityReason.INELIGIBLE_ATTENDANCE
    assert result.current_attendance == 47
    assert result.attendance_delta == 7
    assert result.attendance_required == 10
    assert result.attendance_remaining == 3
    assert result.message == "Need 3 more attendance ops"
    assert result.next_rank.name == "Private"

    factory.attended(user, 1)
    assert check_rankup_eligibility(db, user.id).attendance_delta == 8
    assert check_rankup_eligibility(db, user.id).reason == EligibilityReason.INELIGIBLE_ATTENDANCE

    factory.attended(user, 2)
    assert check_rankup_eligibility(db, user.id).reason == EligibilityReason.ELIGIBLE_MANUAL


def test_only_present_equivalent_main_ops_count(db, factory, ladder):
    user = factory.user("bishop")
    factory.attended(user, 2, status=AttendanceStatus.PRESENT)
    factory.attended(user, 1, status=AttendanceStatus.LATE)
    factory.attended(user, 1, status=AttendanceStatus.GONE_EARLY)
    factory.attended(user, 1, status=AttendanceStatus.PARTIAL)
    factory.attended(user, 3, status=AttendanceStatus.ABSENT)
    factory.attended(user, 2, status=AttendanceStatus.NO_SHOW)
    factory.attended(user, 4, status=AttendanceStatus.PRESENT, main=False)
    assert get_current_attendance(db, user.id) == 5


def test_missing_training_blocks_promotion(db, factory, ladder):
    recruit, private, _corporal = ladder
    marksman = factory.training("Marksman")
    medic = factory.training("Combat Medic")
    factory.requirement(private, marksman, medic)

    user = factory.user("bishop")
    factory.user_rank(user, recruit)
    factory.attended(user, 10)
    factory.completed(user, marksman)
    factory.completed(user, medic, needs_retraining=True)

    result = check_rankup_eligibility(db, user.id)
    assert result.reason == EligibilityReason.INELIGIBLE_TRAINING
    assert result.missing_training_ids == [medic.id]


def test_auto_rank_and_pending_proposal_surface(db, factory, ladder):
    _recruit, private, corporal = ladder
    user = factory.user("bishop")
    factory.user_rank(user, private)
    factory.attended(user, 5)

    result = check_rankup_eligibility(db, user.id)
    assert result.reason == EligibilityReason.ELIGIBLE_AUTO
    assert result.eligible is True
    assert result.pending_proposal_id is None

    proposal = PromotionProposal(
        user_id=user.id,
        current_rank_id=private.id,
        next_rank_id=corporal.id,
        status=ProposalStatus.PENDING,
    )
    db.add(proposal)
    db.flush()
    assert check_rankup_eligibility(db, user.id).pending_proposal_id == proposal.id


def test_requirement_of_zero_is_not_a_gate(db, factory):
    first = factory.rank("First", 1)
    factory.rank("Second", 2, required=0)
    user = factory.user("bishop")
    factory.user_rank(user, first)
    assert db.query(Attendance).count() == 0
    assert check_rankup_eligibility(db, user.id).reason == EligibilityReason.ELIGIBLE_MANUAL
