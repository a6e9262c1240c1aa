from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from muster.core.errors import InvalidState
from muster.models.enums import ProposalStatus, RankOutcome, RankTrigger
from muster.models.message import Message, MessageRecipient
from muster.models.rank import PromotionProposal, RankHistory, UserRank
from muster.services import notifications
from muster.services.promotions import approve_proposal, decline_proposal, propose_promotion

FIXED_NOW = datetime(2026, 3, 8, 12, 0, tzinfo=timezone.utc)


def clock():
    return FIXED_NOW


@pytest.fixture()
def candidate(factory, admin):
    recruit = factory.rank("Recruit", 1)
    private = factory.rank("Private", 2, required=3)
    user = factory.user("apone")
    user_rank = factory.user_rank(user, recruit, baseline=2)
    factory.attended(user, 6)
    return user, user_rank, recruit, private


def history_for(db, user_id):
    return db.query(RankHistory).filter(RankHistory.user_id == user_id).order_by(RankHistory.id).all()


def test_manual_proposal_is_created_and_admins_notified(db, admin, candidate):
    user, _user_rank, recruit, private = candidate

    outcome = propose_promotion(db, user_id=user.id, actor_user_id=admin.id)

    assert outcome.action == "proposed"
    proposal = outcome.proposal
    assert proposal.status == ProposalStatus.PENDING
    assert proposal.current_rank_id == recruit.id
    assert proposal.next_rank_id == private.id
    assert proposal.attendance_total_at_proposal == 6
    assert proposal.attendance_delta_since_last_rank == 4

    message = db.query(Message).filter(Message.title == "New Rankup Proposal").one()
    recipients = db.query(MessageRecipient).filter(MessageRecipient.message_id == message.id).all()
    assert [r.user_id for r in recipients] == [admin.id]
    assert message.action_url == "/admin/promotions"


def test_proposing_twice_reuses_pending_proposal(db, candidate):
    user, *_ = candidate
    first = propose_promotion(db, user_id=user.id)
    second = propose_promotion(db, user_id=user.id)

    assert second.action == "existing"
    assert second.proposal.id == first.proposal.id
    assert db.query(PromotionProposal).count() == 1


def test_ineligible_proposal_is_rejected_with_reason(db, factory):
    recruit = factory.rank("Recruit", 1)
    factory.rank("Private", 2, required=10)
    user = factory.user("frost")
    factory.user_rank(user, recruit)

    with pytest.raises(InvalidState) as excinfo:
        propose_promotion(db, user_id=user.id)
    assert excinfo.value.message == "Need 10 more attendance ops"
    assert excinfo.value.context["reason"] == "ineligible_attendance"
    assert db.query(PromotionProposal).count() == 0


def test_auto_rank_is_applied_without_proposal(db, factory):
    recruit = factory.rank("Recruit", 1)
    private = factory.rank("Private", 2, required=2, auto=True)
    user = factory.user("frost")
    user_rank = factory.user_rank(user, recruit)
    factory.attended(user, 2)

    outcome = propose_promotion(db, user_id=user.id, now=clock)

    assert outcome.action == "promoted"
    assert outcome.proposal is None
    assert user_rank.current_rank_id == private.id
    assert user_rank.attendance_since_last_rank == 2
    assert user_rank.last_ranked_up_at == FIXED_NOW
    [history] = history_for(db, user.id)
    assert history.triggered_by == RankTrigger.AUTO
    assert history.outcome == RankOutcome.APPROVED
    assert (history.previous_rank_name, history.new_rank_name) == ("Recruit", "Private")
    assert db.query(PromotionProposal).count() == 0


def test_approve_uses_attendance_at_approval_time(db, factory, admin, candidate):
    user, user_rank, _recruit, private = candidate
    proposal = propose_promotion(db, user_id=user.id).proposal
    factory.attended(user, 2)

    approved, history = approve_proposal(db, proposal_id=proposal.id, actor_user_id=admin.id, now=clock)

    assert approved.status == ProposalStatus.APPROVED
    assert approved.decided_by_user_id == admin.id
    assert approved.attendance_total_at_proposal == 8
    assert approved.attendance_delta_since_last_rank == 6
    assert user_rank.current_rank_id == private.id
    assert user_rank.attendance_since_last_rank == 8
    assert history.triggered_by == RankTrigger.ADMIN_MANUAL
    assert history.attendance_total_at_change == 8
    assert db.query(Message).filter(Message.title == "Rank Approved").count() == 1


def test_decline_advances_baseline(db, admin, candidate):
    user, user_rank, recruit, _private = candidate
    proposal = propose_promotion(db, user_id=user.id).proposal

    declined, history = decline_proposal(db, proposal_id=proposal.id, decline_reason="Needs more leadership", actor_user_id=admin.id)

    assert declined.status == ProposalStatus.DECLINED
    assert declined.decline_reason == "Needs more leadership"
    assert user_rank.current_rank_id == recruit.id
    assert user_rank.attendance_since_last_rank == 6
    assert history.outcome == RankOutcome.DECLINED
    assert history.decline_reason == "Needs more leadership"
    message = db.query(Message).filter(Message.title == "Rank Proposal Declined").one()
    assert message.body == "Proposal declined: Needs more leadership"


@pytest.mark.parametrize("first", ["approve", "decline"])
@pytest.mark.parametrize("second", ["approve", "decline"])
def test_terminal_proposals_cannot_be_decided_again(db, candidate, first, second):
    user, *_ = candidate
    proposal = propose_promotion(db, user_id=user.id).proposal
    actions = {
        "approve": lambda: approve_proposal(db, proposal_id=proposal.id),
        "decline": lambda: decline_proposal(db, proposal_id=proposal.id),
    }
    actions[first]()
    count = len(history_for(db, user.id))

    with pytest.raises(InvalidState) as excinfo:
        actions[second]()
    assert excinfo.value.context["status"] in ("approved", "declined")
    assert len(history_for(db, user.id)) == count


def test_stale_proposal_loses_the_race(db, candidate):
    user, *_ = candidate
    proposal = propose_promotion(db, user_id=user.id).proposal
    db.query(PromotionProposal).filter(PromotionProposal.id == proposal.id).update(
        {PromotionProposal.status: ProposalStatus.DECLINED},
        synchronize_session=False,
    )

    with pytest.raises(InvalidState):
        approve_proposal(db, proposal_id=proposal.id)
    assert history_for(db, user.id) == []


def test_bot_decision_records_discord_actor(db, candidate):
    user, *_ = candidate
    proposal = propose_promotion(db, user_id=user.id).proposal

    _proposal, history = approve_proposal(
        db,
        proposal_id=proposal.id,
        discord_actor_id="123456789",
        triggered_by=RankTrigger.BOT,
    )
    assert history.triggered_by == RankTrigger.BOT
    assert history.triggered_by_discord_id == "123456789"
    assert history.triggered_by_user_id is None


def test_notification_failure_does_not_undo_promotion(db, monkeypatch, candidate):
    user, user_rank, _recruit, private = candidate
    proposal = propose_promotion(db, user_id=user.id).proposal

    def broken(*args, **kwargs):
        raise OperationalError("INSERT INTO messages", {}, Exception("inbox unavailable"))

    monkeypatch.setattr(notifications, "_write_message", broken)
    approved, _history = approve_proposal(db, proposal_id=proposal.id)
    db.commit()

    assert approved.status == ProposalStatus.APPROVED
    assert db.get(UserRank, user_rank.id).current_rank_id == private.id
    assert db.query(Message).filter(Message.title == "Rank Approved").count() == 0


def test_approving_after_rank_changed_is_rejected(db, factory, candidate):
    user, user_rank, _recruit, _private = candidate
    proposal = propose_promotion(db, user_id=user.id).proposal
    sergeant = factory.rank("Sergeant", 3)
    user_rank.current_rank_id = sergeant.id
    db.flush()

    with pytest.raises(InvalidState) as excinfo:
        approve_proposal(db, proposal_id=proposal.id)

    assert excinfo.value.context["current_rank_id"] == sergeant.id
    assert history_for(db, user.id) == []
    db.refresh(proposal)
    assert proposal.status == ProposalStatus.PENDING
    assert db.get(UserRank, user_rank.id).current_rank_id == sergeant.id
