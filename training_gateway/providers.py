"""Read-only data providers consumed by the tool handlers.

The gateway only depends on the abstract contracts below. The demo
implementations serve fixture data and can be swapped for real stores.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional
import logging
import os

import pandas as pd

from . import config
from .models import ExerciseCatalogEntry, UserProfile, WorkoutSession

logger = logging.getLogger(__name__)


CATALOG_PATH_CANDIDATES = [
    os.path.join(os.path.dirname(__file__), "data", "exercises.csv"),
    "exercises.csv",
]


class ProfileProvider(ABC):
    @abstractmethod
    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        ...

    async def get_default_profile(self) -> UserProfile:
        profile = await self.get_profile(config.DEFAULT_USER_ID)
        if profile is None:
            raise LookupError(f"Default profile '{config.DEFAULT_USER_ID}' is missing")
        return profile


class HistoryProvider(ABC):
    @abstractmethod
    async def get_sessions(self, user_id: str) -> List[WorkoutSession]:
        ...


class ExerciseCatalog(ABC):
    @abstractmethod
    async def list_exercises(self) -> List[ExerciseCatalogEntry]:
        ...


class RmProvider(ABC):
    @abstractmethod
    async def get_rms(self, user_id: str) -> Dict[int, float]:
        """Recorded one-rep-maxes by exercise id. Zero means bodyweight/unknown."""


@dataclass
class Providers:
    profiles: ProfileProvider
    history: HistoryProvider
    catalog: ExerciseCatalog
    rms: RmProvider


# --- demo implementations ---

DEMO_USERS: Dict[str, dict] = {
    "demo_user": {
        "user_id": "demo_user",
        "name": "Demo Trainee",
        "training_level": "intermediate",
        "goal": {"primary": "strength", "secondary": "hypertrophy"},
        "constraints": {"session_minutes": 60, "injuries": ["knee_sensitivity"]},
    },
    "user_123": {
        "user_id": "user_123",
        "name": "User 123",
        "training_level": "beginner",
        "goal": {"primary": "fat_loss", "secondary": "fitness"},
        "constraints": {"session_minutes": 45, "injuries": []},
    },
}

DEMO_WORKOUTS: Dict[str, List[dict]] = {
    "demo_user": [
        {"session_id": "s_2026_01_26", "date": "2026-01-26", "title": "Upper A", "duration_min": 62, "perceived_exertion_rpe": 8},
        {"session_id": "s_2026_01_24", "date": "2026-01-24", "title": "Lower A", "duration_min": 58, "perceived_exertion_rpe": 8},
        {"session_id": "s_2026_01_22", "date": "2026-01-22", "title": "Upper B", "duration_min": 55, "perceived_exertion_rpe": 7.5},
    ],
    "user_123": [
        {"session_id": "s_2026_01_25", "date": "2026-01-25", "title": "Full Body", "duration_min": 44, "perceived_exertion_rpe": 7},
    ],
}

DEMO_RMS: Dict[str, Dict[int, float]] = {
    "demo_user": {
        101: 120,  # bench
        102: 72,   # ohp
        103: 130,  # row
        104: 0,    # pull-up, bodyweight
        201: 165,  # back squat
        202: 155,  # box squat
        203: 190,  # trap bar deadlift
        204: 150,  # rdl
    },
}


@dataclass
class InMemoryProfileProvider(ProfileProvider):
    users: Dict[str, dict] = field(default_factory=lambda: dict(DEMO_USERS))

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        raw = self.users.get(user_id)
        return UserProfile(**raw) if raw is not None else None


@dataclass
class InMemoryHistoryProvider(HistoryProvider):
    workouts: Dict[str, List[dict]] = field(default_factory=lambda: dict(DEMO_WORKOUTS))

    async def get_sessions(self, user_id: str) -> List[WorkoutSession]:
        return [WorkoutSession(**s) for s in self.workouts.get(user_id, [])]


@dataclass
class InMemoryRmProvider(RmProvider):
    records: Dict[str, Dict[int, float]] = field(default_factory=lambda: dict(DEMO_RMS))

    async def get_rms(self, user_id: str) -> Dict[int, float]:
        return dict(self.records.get(user_id, {}))


class StaticExerciseCatalog(ExerciseCatalog):
    def __init__(self, entries: List[ExerciseCatalogEntry]) -> None:
        self.entries = list(entries)

    async def list_exercises(self) -> List[ExerciseCatalogEntry]:
        return list(self.entries)


class CsvExerciseCatalog(ExerciseCatalog):
    """Exercise catalog read once from a CSV file (id,key,name,group,knee_friendly)."""

    def __init__(self, path: Optional[str] = None) -> None:
        self.df = self._load(path)
        self.entries: List[ExerciseCatalogEntry] = [self._from_row(r) for _, r in self.df.iterrows()]
        logger.info("Loaded %d catalog exercises", len(self.entries))

    async def list_exercises(self) -> List[ExerciseCatalogEntry]:
        return list(self.entries)

    def _load(self, path: Optional[str]) -> pd.DataFrame:
        candidates = [path] if path else ([config.CATALOG_PATH] if config.CATALOG_PATH else CATALOG_PATH_CANDIDATES)
        for p in candidates:
            if os.path.exists(p):
                df = pd.read_csv(p)
                df.columns = [str(c).strip() for c in df.columns]
                return df
        raise FileNotFoundError(f"Exercise catalog not found. Looked in: {candidates}")

    @staticmethod
    def _from_row(row: pd.Series) -> ExerciseCatalogEntry:
        knee = row["knee_friendly"]
        if isinstance(knee, str):
            knee = knee.strip().lower() in ("true", "1", "yes")
        return ExerciseCatalogEntry(
            id=int(row["id"]),
            key=str(row["key"]).strip(),
            name=str(row["name"]).strip(),
            group=str(row["group"]).strip(),
            knee_friendly=bool(knee),
        )


def demo_providers() -> Providers:
    return Providers(
        profiles=InMemoryProfileProvider(),
        history=InMemoryHistoryProvider(),
        catalog=CsvExerciseCatalog(),
        rms=InMemoryRmProvider(),
    )
