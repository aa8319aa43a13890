"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
Integration and smoke tests run against a throwaway SQLite file database
created per test, so no PostgreSQL server is needed.
"""
import random
import sys
from dataclasses import dataclass, field
from pathlib import Path
from uuid import UUID

import pytest
from loguru import logger

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from quizrank.adaptive import RatingEngine, RatingPolicy  # noqa: E402
from quizrank.db.database import (  # noqa: E402
    create_db_engine,
    create_session_factory,
    init_db,
    session_scope,
)
from quizrank.db.models import Category, Item  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (require database)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


# ========================================
# Logging
# ========================================


@pytest.fixture
def log_messages():
    """Capture loguru messages emitted during a test."""
    messages: list[str] = []
    handler_id = logger.add(messages.append, level="DEBUG", format="{level} | {message}")
    yield messages
    logger.remove(handler_id)


# ========================================
# Database
# ========================================


@pytest.fixture
def db_engine(tmp_path):
    """Fresh SQLite file database with all tables created."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'quizrank.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def policy():
    """Default policy without selection jitter (fully deterministic ranking)."""
    return RatingPolicy(weight_jitter=0.0)


@dataclass
class SeedData:
    """Ids of the seeded categories and items."""

    categories: dict[str, int] = field(default_factory=dict)
    items: dict[str, UUID] = field(default_factory=dict)


SEED_CATEGORIES = [
    (1, "fractions", "Fractions"),
    (2, "geometry", "Geometry"),
    (3, "statistics", "Statistics"),  # no items
]

SEED_ITEMS = [
    # key, category slug, prompt, answer, difficulty
    ("f_easy", "fractions", "What is 1/2 + 1/2?", "1", 300),
    ("f_mid", "fractions", "What is 1/4 + 1/4?", "one half", 500),
    ("f_hard", "fractions", "What is 1/3 + 1/4?", "7/12", 700),
    ("g_mid", "geometry", "Sum of the interior angles of a triangle?", "180", 500),
    ("g_hard", "geometry", "Interior angle of a regular hexagon?", "120", 650),
]


def seed_catalog(session_factory) -> SeedData:
    """Insert the test categories and items."""
    seed = SeedData()
    with session_scope(session_factory) as session:
        for category_id, slug, name in SEED_CATEGORIES:
            session.add(Category(id=category_id, slug=slug, name=name))
            seed.categories[slug] = category_id
        session.flush()
        for key, slug, prompt, answer, difficulty in SEED_ITEMS:
            item = Item(
                category_id=seed.categories[slug],
                prompt=prompt,
                correct_answer=answer,
                explanation=f"Worked solution for: {prompt}",
                difficulty_value=difficulty,
            )
            session.add(item)
            session.flush()
            seed.items[key] = item.id
    return seed


@pytest.fixture
def seeded(session_factory) -> SeedData:
    return seed_catalog(session_factory)


@pytest.fixture
def catalog_seeder():
    """seed_catalog for tests that build their own database."""
    return seed_catalog


@pytest.fixture
def rating_engine(session_factory, policy, seeded):
    return RatingEngine(session_factory, policy, random.Random(0))


@pytest.fixture
def quiz_session(rating_engine):
    """An active practice session owned by alice."""
    return rating_engine.sessions.create_session("alice")
