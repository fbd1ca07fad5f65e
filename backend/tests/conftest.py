from datetime import datetime
from typing import Optional

import pytest

from plantdx.config import Settings
from plantdx.container import build_services
from plantdx.db import create_engine_with_retry, make_session_factory, run_schema_migrations, session_scope
from plantdx.models import db_models
from plantdx.models.seed import get_seed_data
from plantdx.repositories.sql import SqlUnitOfWork
from plantdx.services.inference import MockInferenceClient
from plantdx.services.storage import LocalFileStorage


class DataFactory:
    """Inserts rows directly, bypassing the services under test."""

    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    def _add(self, row):
        with session_scope(self._session_factory) as db:
            db.add(row)
            db.flush()
            return row.id

    def company(self, name: str = "Acme Farms") -> str:
        return self._add(db_models.Company(name=name))

    def user(self, company_id: Optional[str], name: str = "grower") -> str:
        return self._add(db_models.User(company_id=company_id, name=name))

    def plot(self, company_id: str, name: str, created_at: Optional[datetime] = None) -> str:
        return self._add(
            db_models.Plot(
                company_id=company_id,
                name=name,
                created_at=created_at or db_models.utcnow(),
            )
        )

    def image(self, user_id: str, filepath: str = "missing.png") -> str:
        return self._add(db_models.Image(user_id=user_id, filename="leaf.png", filepath=filepath))

    def label_id(self, name: str) -> int:
        with session_scope(self._session_factory) as db:
            return db.query(db_models.Label).filter_by(name=name).one().id

    def prediction(
        self,
        user_id: str,
        label: str,
        severity: float,
        plot_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> str:
        return self._add(
            db_models.Prediction(
                user_id=user_id,
                image_id=self.image(user_id),
                label_id=self.label_id(label),
                plot_id=plot_id,
                presence_confidence=0.5,
                absence_confidence=0.5,
                severity=severity,
                created_at=created_at or db_models.utcnow(),
            )
        )

    def count(self, model) -> int:
        with session_scope(self._session_factory) as db:
            return db.query(model).count()


@pytest.fixture
def engine(tmp_path):
    engine = create_engine_with_retry(f"sqlite:///{tmp_path / 'plantdx.db'}", retries=1)
    run_schema_migrations(engine)
    with session_scope(make_session_factory(engine)) as db:
        get_seed_data().apply(db)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def uow_factory(session_factory):
    return lambda: SqlUnitOfWork(session_factory)


@pytest.fixture
def factory(session_factory):
    return DataFactory(session_factory)


@pytest.fixture
def storage(tmp_path):
    return LocalFileStorage(tmp_path / "storage")


@pytest.fixture
def inference():
    return MockInferenceClient()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url="sqlite://",
        storage_dir=tmp_path / "storage",
        inference_backend="mock",
        inference_retries=2,
        backoff_seconds=0.0,
    )


@pytest.fixture
def services(settings, engine, inference, storage):
    return build_services(settings, engine=engine, inference=inference, storage=storage)


@pytest.fixture
def farm(factory):
    """Two companies; Acme has two growers and two plots, Other has one grower."""
    acme = factory.company("Acme Farms")
    other = factory.company("Other Farms")
    return {
        "company": acme,
        "other_company": other,
        "alice": factory.user(acme, "alice"),
        "bob": factory.user(acme, "bob"),
        "carol": factory.user(other, "carol"),
        "north": factory.plot(acme, "North", datetime(2024, 1, 1)),
        "south": factory.plot(acme, "South", datetime(2024, 2, 1)),
    }
