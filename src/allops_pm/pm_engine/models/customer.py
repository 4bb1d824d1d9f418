"""
Identity anchors: customers, environments and PM plans.

These tables are owned by the surrounding CRUD application. The sync core only
reads them to validate import payloads and to name uploaded diagrams.
"""

from __future__ import annotations

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from allops_pm.models.base import Base


class Customer(Base):
    __tablename__ = "customer"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(60), nullable=False, index=True)
    name = Column(String(200), nullable=True)
    project_name = Column(String(200), nullable=True)
    status = Column(String(30), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    environments = relationship(
        "Environment",
        secondary="customer_env",
        order_by="Environment.id",
        viewonly=True,
    )


class Environment(Base):
    __tablename__ = "env"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    description = Column(Text, nullable=True)


class CustomerEnvironment(Base):
    __tablename__ = "customer_env"

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, ForeignKey("customer.id"), nullable=False, index=True)
    env_id = Column(Integer, ForeignKey("env.id"), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("customer_id", "env_id", name="uq_customer_env_link"),
    )


class PMPlan(Base):
    __tablename__ = "pm_plan"

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, ForeignKey("customer.id"), nullable=False, index=True)
    name = Column(String(200), nullable=True)
    year = Column(String(4), nullable=True)
    round = Column(Integer, nullable=True)
    status = Column(String(30), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    customer = relationship("Customer", lazy="joined")
