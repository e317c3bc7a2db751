"""Shared fixtures for all tests."""

import os

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from sheetforge.database.models import Base
from sheetforge.game.character.creation import new_character_sheet
from sheetforge.game.character.sheet import CharacterSheet
from sheetforge.game.systems.gate import InitialIncreased, InitialNew
from sheetforge.game.systems.mutations import update_attribute, update_calculation_points


# Set the test database URL before anything can cache the settings
@pytest.fixture(scope="session", autouse=True)
def use_test_database(tmp_path_factory):
    """Force all tests to use a temporary database instead of the default one."""
    test_db_path = tmp_path_factory.mktemp("sheetforge_test") / "test_sheetforge.db"
    os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{test_db_path}"

    import sheetforge.database.engine as engine_module

    engine_module._engine = None
    engine_module._async_session_factory = None

    from sheetforge.config import get_settings

    get_settings.cache_clear()

    yield

    engine_module._engine = None
    engine_module._async_session_factory = None


@pytest.fixture
async def db_session():
    """Create a test database session with in-memory SQLite."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:
        yield session
        await session.rollback()

    await engine.dispose()


@pytest.fixture
def balanced_attributes() -> dict[str, int]:
    """Creation points spread evenly: 5 in every attribute."""
    return {
        "courage": 5,
        "intelligence": 5,
        "concentration": 5,
        "charisma": 5,
        "mentalResilience": 5,
        "dexterity": 5,
        "endurance": 5,
        "strength": 5,
    }


@pytest.fixture
def sheet(balanced_attributes) -> CharacterSheet:
    """A fresh level 1 sheet with 500 adventure points."""
    return new_character_sheet(balanced_attributes, adventure_points=500)


@pytest.fixture
def funded_sheet(sheet) -> CharacterSheet:
    """The fresh sheet with 10 extra attribute points granted."""
    result = update_calculation_points(
        sheet, attribute_points_total=InitialIncreased(initial_value=40, increased_points=10)
    )
    assert result.sheet is not None
    return result.sheet


@pytest.fixture
def endurance_sheet() -> CharacterSheet:
    """Sheet with endurance current 10, endurance mod 3 and 3 attribute points left."""
    sheet = new_character_sheet(
        {
            "courage": 5,
            "intelligence": 4,
            "concentration": 4,
            "charisma": 3,
            "mentalResilience": 4,
            "dexterity": 5,
            "endurance": 10,
            "strength": 5,
        }
    )
    sheet = update_attribute(sheet, "endurance", mod=InitialNew(initial_value=0, new_value=3)).sheet
    assert sheet is not None
    sheet = update_calculation_points(
        sheet, attribute_points_total=InitialIncreased(initial_value=40, increased_points=3)
    ).sheet
    assert sheet is not None
    return sheet
