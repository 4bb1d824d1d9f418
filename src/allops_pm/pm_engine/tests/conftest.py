from __future__ import annotations

from datetime import datetime
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from allops_pm.models.base import Base
from allops_pm.pm_engine.bootstrap import import_all_models
from allops_pm.pm_engine.models.customer import (
    Customer,
    CustomerEnvironment,
    Environment,
    PMPlan,
)


@pytest.fixture
def db():
    import_all_models()
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def seeded(db):
    """ACME (id 1) linked to PROD and UAT; DR exists but belongs to nobody."""
    customer = Customer(id=1, code="acme-01", name="ACME Corp")
    prod = Environment(id=1, name="PROD")
    uat = Environment(id=2, name="UAT")
    dr = Environment(id=3, name="DR")
    plan = PMPlan(id=10, customer_id=1, name="PM 2024 R1", year="2024", round=1)
    other = Customer(id=2, code="globex")
    db.add_all([customer, other, prod, uat, dr])
    db.flush()
    db.add_all(
        [
            CustomerEnvironment(customer_id=1, env_id=1),
            CustomerEnvironment(customer_id=1, env_id=2),
            CustomerEnvironment(customer_id=2, env_id=3),
            plan,
        ]
    )
    db.commit()
    return SimpleNamespace(
        customer=customer, plan=plan, prod=prod, uat=uat, dr=dr, created=datetime.utcnow()
    )
