from collections.abc import Iterator
from pathlib import Path

import pytest
from sqlalchemy.engine import Engine

from docqa import models  # noqa: F401
from docqa.db import Base, create_db_engine


@pytest.fixture
def engine(tmp_path: Path) -> Iterator[Engine]:
    db_engine = create_db_engine(f"sqlite+pysqlite:///{tmp_path / 'worker-tests.db'}")
    Base.metadata.create_all(bind=db_engine)

    yield db_engine

    db_engine.dispose()
