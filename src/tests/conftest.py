"""Pytest configuration and fixtures for service layer tests."""

from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, scoped_session

from src.models import Material, QACheckpoint, Recipe, RecipeIngredient
from src.models.base import Base
from src.utils.constants import QA_STAGE_ORDER


@pytest.fixture(scope="function")
def test_db():
    """Provide a clean test database for each test function.

    This fixture:
    1. Creates an in-memory SQLite database
    2. Creates all tables
    3. Provides the database to the test
    4. Drops all tables after the test completes
    """
    # Create in-memory SQLite database for testing
    engine = create_engine("sqlite:///:memory:", echo=False)

    # Create all tables
    Base.metadata.create_all(engine)

    # Create session factory
    session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    Session = scoped_session(session_factory)

    # Monkey-patch the global session factory for tests
    import src.services.database as db_module

    original_get_session = db_module.get_session_factory
    db_module.get_session_factory = lambda: Session

    # Provide database to test
    yield Session

    # Cleanup
    Session.remove()
    Base.metadata.drop_all(engine)

    # Restore original session factory
    db_module.get_session_factory = original_get_session


@pytest.fixture
def db_session(test_db):
    """Provide a database session for tests."""
    return test_db()


# =============================================================================
# Domain Fixtures
# =============================================================================


@pytest.fixture
def beef(db_session):
    """Beef material tracked in grams."""
    material = Material(name="Beef Silverside", material_code="BEEF", category="beef", unit="g")
    db_session.add(material)
    db_session.flush()
    return material


@pytest.fixture
def salt(db_session):
    """Salt material tracked in grams."""
    material = Material(name="Salt", material_code="SALT", category="seasoning", unit="g")
    db_session.add(material)
    db_session.flush()
    return material


@pytest.fixture
def cure_salt(db_session):
    """Curing salt material tracked in grams."""
    material = Material(name="Denkurit", material_code="CURE", category="cure", unit="g")
    db_session.add(material)
    db_session.flush()
    return material


@pytest.fixture
def jerky_recipe(db_session, beef, salt, cure_salt):
    """Recipe with a 1000 g base: 1000 g beef, 50 g salt and a Denkurit cure line.

    Scaled to 2 kg input the non-cure mass is 2100 g, so the cure target at
    125 ppm is 125e-6 * 2100 / (0.11 - 125e-6) grams.
    """
    recipe = Recipe(name="Original Jerky", recipe_code="JERKY-OG", base_reference_mass=1000.0)
    recipe.ingredients = [
        RecipeIngredient(material_id=beef.id, quantity=1000.0, unit="g", sort_order=0),
        RecipeIngredient(
            material_id=salt.id, quantity=50.0, unit="g", tolerance_percentage=5.0, sort_order=1
        ),
        RecipeIngredient(
            material_id=cure_salt.id,
            quantity=2.5,
            unit="g",
            is_cure=True,
            cure_type="denkurit",
            is_critical=True,
            sort_order=2,
        ),
    ]
    db_session.add(recipe)
    db_session.flush()
    return recipe


@pytest.fixture
def qa_checkpoints(db_session):
    """One required checkpoint per stage, plus an optional one in mixing."""
    checkpoints = []
    for order, stage in enumerate(QA_STAGE_ORDER):
        checkpoints.append(
            QACheckpoint(
                code=f"{stage.upper()}-1",
                name=f"{stage.title()} check",
                stage=stage,
                required=True,
                display_order=order,
            )
        )
    checkpoints.append(
        QACheckpoint(code="MIXING-OPT", name="Optional note", stage="mixing", required=False)
    )
    db_session.add_all(checkpoints)
    db_session.flush()
    return checkpoints


@pytest.fixture
def today():
    return date(2025, 3, 10)
