from __future__ import annotations

import pytest

from muster.core.errors import ValidationError
from muster.models.enums import ChangeType, MigrationStrategy, RankTrigger
from muster.models.rank import RankHistory, UserRank
from muster.schemas.migration import RankMapping
from muster.services.rank_migration import apply_migration, preview_migration


@pytest.fixture()
def ranked(factory, admin):
    r1 = factory.rank("Recruit", 1)
    r2 = factory.rank("Private", 2, required=5)
    r3 = factory.rank("Sergeant", 3, required=10)
    users = {}
    for name, rank, baseline in (("xeno", r1, 12), ("yuri", r3, 3), ("zed", r2, 7)):
        users[name] = factory.user(name)
        factory.user_rank(users[name], rank, baseline=baseline)
    factory.user_rank(factory.user("nobody"), None)
    return (r1, r2, r3), users


def test_recalculate_preview_matches_apply(db, admin, ranked):
    (r1, r2, r3), users = ranked

    preview = preview_migration(db, strategy=MigrationStrategy.RECALCULATE)
    planned = {c.user_id: (c.new_rank_id, c.change_type) for c in preview.changes}
    assert planned == {
        users["xeno"].id: (r3.id, ChangeType.PROMOTION),
        users["yuri"].id: (r1.id, ChangeType.DEMOTION),
        users["zed"].id: (r2.id, ChangeType.UNCHANGED),
    }
    assert (preview.summary.promotions, preview.summary.demotions, preview.summary.unchanged) == (1, 1, 1)
    assert db.query(RankHistory).count() == 0

    result = apply_migration(db, strategy=MigrationStrategy.RECALCULATE, actor_user_id=admin.id)
    assert (result.applied, result.unchanged, result.failed) == (2, 1, [])

    applied = {ur.user_id: ur.current_rank_id for ur in db.query(UserRank).filter(UserRank.current_rank_id.is_not(None))}
    assert applied == {user_id: rank_id for user_id, (rank_id, _change) in planned.items()}

    history = db.query(RankHistory).order_by(RankHistory.id).all()
    assert {h.user_id for h in history} == {users["xeno"].id, users["yuri"].id}
    assert {h.triggered_by for h in history} == {RankTrigger.SYSTEM_MIGRATION}
    assert history[0].note == "Migration: recalculate strategy applied"
    assert history[0].attendance_delta_since_last_rank == 12
    moved = db.query(UserRank).filter(UserRank.user_id == users["xeno"].id).one()
    assert moved.attendance_since_last_rank == 0


def test_grandfather_changes_nothing(db, ranked):
    preview = preview_migration(db, strategy=MigrationStrategy.GRANDFATHER)
    assert {c.change_type for c in preview.changes} == {ChangeType.UNCHANGED}
    assert preview.summary.total == 3

    result = apply_migration(db, strategy=MigrationStrategy.GRANDFATHER)
    assert (result.applied, result.unchanged) == (0, 3)
    assert db.query(RankHistory).count() == 0


def test_map_strategy_follows_mappings(db, ranked):
    (r1, r2, r3), users = ranked
    mappings = [RankMapping(old_rank_id=r1.id, new_rank_id=r2.id)]

    preview = preview_migration(db, strategy=MigrationStrategy.MAP, mappings=mappings)
    changed = [c for c in preview.changes if c.change_type != ChangeType.UNCHANGED]
    assert [(c.user_id, c.new_rank_name) for c in changed] == [(users["xeno"].id, "Private")]

    result = apply_migration(db, strategy=MigrationStrategy.MAP, mappings=mappings)
    assert result.applied == 1


def test_map_strategy_requires_mappings(db, ranked):
    with pytest.raises(ValidationError):
        preview_migration(db, strategy=MigrationStrategy.MAP)
    with pytest.raises(ValidationError):
        apply_migration(db, strategy=MigrationStrategy.MAP, mappings=[])


def test_map_to_unknown_rank_is_rejected(db, ranked):
    (r1, _r2, _r3), _users = ranked
    with pytest.raises(ValidationError):
        preview_migration(db, strategy=MigrationStrategy.MAP, mappings=[RankMapping(old_rank_id=r1.id, new_rank_id=999)])
