import pytest
from sqlalchemy import create_engine

from tablemirror import ReplicationMetrics, SchemaResolver

from helpers import FakeBatchReader, SqliteSource


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'source.db'}")
    yield engine
    engine.dispose()


@pytest.fixture
def source(engine):
    return SqliteSource(engine)


@pytest.fixture
def resolver():
    return SchemaResolver()


@pytest.fixture
def metrics():
    return ReplicationMetrics()


@pytest.fixture
def fake_reader():
    return FakeBatchReader()
