from datetime import datetime, timezone

import pytest

from training_gateway.planner import ProgramSynthesizer
from training_gateway.providers import (
    CsvExerciseCatalog,
    InMemoryHistoryProvider,
    InMemoryProfileProvider,
    InMemoryRmProvider,
    Providers,
    StaticExerciseCatalog,
)


FIXED_NOW = datetime(2026, 2, 1, 9, 30, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def catalog_entries():
    return CsvExerciseCatalog().entries


@pytest.fixture
def synthesizer():
    return ProgramSynthesizer(id_generator=lambda now: f"prog_{now:%Y%m%d}_test", clock=lambda: FIXED_NOW)


@pytest.fixture
def providers(catalog_entries):
    return Providers(
        profiles=InMemoryProfileProvider(),
        history=InMemoryHistoryProvider(),
        catalog=StaticExerciseCatalog(catalog_entries),
        rms=InMemoryRmProvider(),
    )
