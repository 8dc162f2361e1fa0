from __future__ import annotations

import datetime as dt
from typing import Any, Optional

import pytest
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from core.db import build_engine, create_schema, session_scope
from core.models import Plan, UserPreference
from core.services.repository import SqlPlanRepository

START = dt.datetime(2026, 1, 5, 9, 0)


class FakeClock:
    def __init__(self, now: dt.datetime = START):
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs) -> dt.datetime:
        self.now += dt.timedelta(**kwargs)
        return self.now


def sample_week(*names: str) -> list[dict[str, Any]]:
    exercises = [{"exercise_name": n, "category": "main", "sets": 3, "reps": "5"} for n in names]
    exercises.append({"exercise_name": "Plank", "category": "accessory"})
    return [{"day": "Monday", "blocks": [{"name": "Strength", "exercises": exercises}]}]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session_factory(tmp_path) -> sessionmaker:
    engine = build_engine(f"sqlite:///{tmp_path / 'scheduler.db'}")
    create_schema(engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def repository(session_factory) -> SqlPlanRepository:
    return SqlPlanRepository(session_factory)


@pytest.fixture
def seed_plan(session_factory):
    def _seed(
        user_id: str = "user-1",
        current_week: int = 1,
        total_weeks: int = 12,
        phase: str = "base",
        kind: Optional[str] = "event_anchored",
        created_at: dt.datetime = START,
        weekly_plan: Any = None,
        preferences: Any = None,
        periodization: Any = "default",
    ) -> int:
        if periodization == "default":
            periodization = {"current_week": current_week, "total_weeks": total_weeks, "phase": phase}
            if kind is not None:
                periodization["kind"] = kind
        with session_scope(session_factory) as s:
            plan = Plan(
                user_id=user_id,
                weekly_plan=sample_week("Back Squat", "Bench Press") if weekly_plan is None else weekly_plan,
                periodization=periodization,
                created_at=created_at,
            )
            s.add(plan)
            if preferences is not False:
                existing = s.execute(select(UserPreference).where(UserPreference.user_id == user_id)).scalar_one_or_none()
                if existing is None:
                    s.add(
                        UserPreference(
                            user_id=user_id,
                            training_preferences=preferences or {"primary_goal": "strength", "experience_level": "advanced"},
                        )
                    )
            s.flush()
            return plan.id

    return _seed
