from __future__ import annotations

from datetime import date, time
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import muster.models  # noqa: F401
from muster.core.deps import get_current_user, require_bot
from muster.db.base import Base
from muster.db.session import enable_sqlite_savepoints, get_db
from muster.main import app
from muster.models.attendance import Attendance
from muster.models.enums import AttendanceStatus
from muster.models.rank import Rank, RankTransitionRequirement, UserRank
from muster.models.roster import Orbat, Signup
from muster.models.training import Training, UserTraining
from muster.models.user import AuthAccount, User

EVENT_DATE = date(2026, 3, 7)


@pytest.fixture()
def db():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


class Factory:
    def __init__(self, db: Session) -> None:
        self.db = db

    def _save(self, obj):
        self.db.add(obj)
        self.db.flush()
        return obj

    def user(self, username: str, *, is_admin: bool = False, steam_id: Optional[str] = None) -> User:
        user = self._save(User(username=username, display_name=username.title(), is_admin=is_admin, is_active=True))
        if steam_id:
            self._save(AuthAccount(user_id=user.id, provider="steam", provider_user_id=steam_id))
        return user

    def rank(self, name: str, order_index: int, *, required: Optional[int] = None, auto: bool = False) -> Rank:
        return self._save(
            Rank(
                name=name,
                abbreviation=name[:3].upper(),
                order_index=order_index,
                attendance_required_since_last_rank=required,
                auto_rankup_enabled=auto,
            )
        )

    def user_rank(
        self,
        user: User,
        rank: Optional[Rank],
        *,
        baseline: int = 0,
        interview_done: bool = True,
        retired: bool = False,
    ) -> UserRank:
        return self._save(
            UserRank(
                user_id=user.id,
                current_rank_id=rank.id if rank else None,
                attendance_since_last_rank=baseline,
                interview_done=interview_done,
                retired=retired,
            )
        )

    def orbat(
        self,
        name: str = "Operation",
        *,
        event_date: Optional[date] = EVENT_DATE,
        start: Optional[time] = time(19, 0),
        end: Optional[time] = time(21, 30),
        main: bool = True,
    ) -> Orbat:
        return self._save(Orbat(name=name, event_date=event_date, start_time=start, end_time=end, is_main_op=main))

    def signup(self, user: User, orbat: Orbat) -> Signup:
        return self._save(Signup(user_id=user.id, orbat_id=orbat.id, slot_name="Rifleman"))

    def attended(self, user: User, count: int, *, status: AttendanceStatus = AttendanceStatus.PRESENT, main: bool = True) -> None:
        for index in range(count):
            orbat = self.orbat(f"Op {user.username} {index}", event_date=None, main=main)
            self._save(Attendance(user_id=user.id, orbat_id=orbat.id, status=status))

    def training(self, name: str) -> Training:
        return self._save(Training(name=name))

    def completed(self, user: User, training: Training, *, needs_retraining: bool = False) -> UserTraining:
        return self._save(UserTraining(user_id=user.id, training_id=training.id, needs_retraining=needs_retraining))

    def requirement(self, rank: Rank, *trainings: Training) -> RankTransitionRequirement:
        requirement = RankTransitionRequirement(target_rank_id=rank.id)
        requirement.required_trainings = list(trainings)
        return self._save(requirement)


@pytest.fixture()
def factory(db: Session) -> Factory:
    return Factory(db)


@pytest.fixture()
def admin(factory: Factory) -> User:
    return factory.user("admin", is_admin=True)


@pytest.fixture()
def client(db: Session, admin: User):
    db.commit()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    def override_get_current_user():
        return admin

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[require_bot] = lambda: None

    client_instance = TestClient(app)
    try:
        yield client_instance
    finally:
        client_instance.close()
        app.dependency_overrides.clear()
