from __future__ import annotations

import pytest

from muster.core.errors import IdentityNotFound, NotFound
from muster.models.enums import RankTrigger
from muster.models.rank import RankHistory, UserRank
from muster.services.user_ranks import bulk_rank_assign, bulk_retire_toggle


def test_bulk_rank_assign_baselines_attendance(db, factory, admin):
    recruit, private = factory.rank("Recruit", 1), factory.rank("Private", 2, required=5)
    veteran, newcomer = factory.user("apone"), factory.user("dietrich")
    factory.user_rank(veteran, recruit, baseline=1)
    factory.attended(veteran, 4)

    assigned = bulk_rank_assign(db, user_ids=[veteran.id, newcomer.id, veteran.id], rank_id=private.id, actor_user_id=admin.id)

    assert assigned == [veteran.id, newcomer.id]
    veteran_rank = db.query(UserRank).filter(UserRank.user_id == veteran.id).one()
    assert veteran_rank.current_rank_id == private.id
    assert veteran_rank.attendance_since_last_rank == 4
    assert db.query(UserRank).filter(UserRank.user_id == newcomer.id).one().attendance_since_last_rank == 0

    history = db.query(RankHistory).filter(RankHistory.user_id == veteran.id).one()
    assert history.previous_rank_name == "Recruit"
    assert history.new_rank_name == "Private"
    assert history.attendance_delta_since_last_rank == 3
    assert history.triggered_by == RankTrigger.ADMIN
    assert history.note == "Bulk rank assignment"


def test_bulk_rank_assign_rejects_unknown_ids(db, factory):
    rank = factory.rank("Recruit", 1)
    user = factory.user("frost")

    with pytest.raises(NotFound):
        bulk_rank_assign(db, user_ids=[user.id], rank_id=999)
    with pytest.raises(IdentityNotFound):
        bulk_rank_assign(db, user_ids=[user.id, 999], rank_id=rank.id)
    assert db.query(UserRank).count() == 0


def test_bulk_retire_toggle_flips_or_sets(db, factory):
    rank = factory.rank("Recruit", 1)
    active, retired = factory.user("crowe"), factory.user("wierzbowski")
    factory.user_rank(active, rank)
    factory.user_rank(retired, rank, retired=True)

    bulk_retire_toggle(db, user_ids=[active.id, retired.id])
    states = {row.user_id: row.retired for row in db.query(UserRank).all()}
    assert states == {active.id: True, retired.id: False}

    bulk_retire_toggle(db, user_ids=[active.id, retired.id], retired=True)
    assert all(row.retired for row in db.query(UserRank).all())
