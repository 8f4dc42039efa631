from collections.abc import Iterator
from pathlib import Path

import pytest
from sqlalchemy.engine import Engine

from docqa import models  # noqa: F401
from docqa.config import get_settings
from docqa.db import Base, create_db_engine


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def engine(tmp_path: Path) -> Iterator[Engine]:
    sqlite_db_path = tmp_path / "docqa-tests.db"
    db_engine = create_db_engine(f"sqlite+pysqlite:///{sqlite_db_path}")
    Base.metadata.create_all(bind=db_engine)

    yield db_engine

    db_engine.dispose()
