from __future__ import annotations

import os

import pytest

import clinic_schedule.db as app_db
from clinic_schedule import models
from clinic_schedule.config import load_settings

os.environ.setdefault("ENVIRONMENT", "test")


@pytest.fixture(autouse=True)
def reset_database(tmp_path, monkeypatch):
    db_file = tmp_path / "test_clinic_schedule.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_file}")
    monkeypatch.delenv("PTO_SERVICE_ID", raising=False)

    # Rebuild DB bindings per test so every test gets its own writable SQLite file.
    app_db.engine.dispose()
    app_db.DATABASE_URL = app_db.get_database_url()
    app_db.engine = app_db.build_engine(app_db.DATABASE_URL)
    app_db.SessionLocal = app_db.build_sessionmaker(app_db.engine)

    from clinic_schedule.main import app

    app.state.settings = load_settings()

    app_db.Base.metadata.drop_all(bind=app_db.engine)
    app_db.Base.metadata.create_all(bind=app_db.engine)
    yield
    app_db.Base.metadata.drop_all(bind=app_db.engine)
    app_db.engine.dispose()


@pytest.fixture
def db():
    session = app_db.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seeded(db):
    """Services and providers shared by most tests; returns ids by name."""
    services = {name: models.Service(name=name) for name in ("PTO", "Clinic", "Procedures", "Consults")}
    providers = {
        "P1": models.Provider(name="Pat One", initials="P1", email="p1@example.com"),
        "P2": models.Provider(name="Sam Two", initials="P2", email="p2@example.com"),
        "P3": models.Provider(name="Alex Three", initials="P3", work_days=[1, 3, 5]),
    }
    db.add_all([*services.values(), *providers.values()])
    db.commit()
    ids = {name: row.id for name, row in services.items()}
    ids.update({name: row.id for name, row in providers.items()})
    return ids
