from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from upkeep.auth.access_scope import AccessScopeResolver
from upkeep.core.config import get_config
from upkeep.core.enums import ContractFrequency, ContractStatus, UserRole, VisitPriority
from upkeep.models import Base, Branch, MaintenanceContract, Product, Tenant, User, UserBranch

FIXED_NOW = datetime(2024, 3, 15, 9, 0, 0)


def fixed_clock() -> datetime:
    return FIXED_NOW


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def clock():
    return fixed_clock


@pytest.fixture
def config():
    return replace(get_config(), ANALYTICS_CACHE_ENABLED=False, MISSED_GRACE_DAYS=1)


def _user(session, tenant, email, role, branches=(), is_active=True):
    user = User(tenant_id=tenant.id, email=email, full_name=email.split("@")[0].title(), role=role, is_active=is_active)
    session.add(user)
    session.flush()
    for branch in branches:
        session.add(UserBranch(user_id=user.id, branch_id=branch.id))
    return user


@pytest.fixture
def world(session):
    """Two tenants; tenant one has branches north and south with staff in each."""
    acme = Tenant(tenant_key="acme", name="Acme Services")
    globex = Tenant(tenant_key="globex", name="Globex")
    session.add_all([acme, globex])
    session.flush()

    north = Branch(tenant_id=acme.id, name="North", code="N")
    south = Branch(tenant_id=acme.id, name="South", code="S")
    foreign = Branch(tenant_id=globex.id, name="Globex HQ", code="HQ")
    session.add_all([north, south, foreign])
    session.flush()

    ns = SimpleNamespace(acme=acme, globex=globex, north=north, south=south, foreign=foreign)
    ns.super_admin = _user(session, acme, "root@acme.test", UserRole.SUPER_ADMIN)
    ns.admin = _user(session, acme, "admin@acme.test", UserRole.TENANT_ADMIN)
    ns.manager = _user(session, acme, "manager@acme.test", UserRole.MANAGER, branches=(north,))
    ns.south_manager = _user(session, acme, "south@acme.test", UserRole.MANAGER, branches=(south,))
    ns.tech = _user(session, acme, "tech@acme.test", UserRole.TECHNICIAN, branches=(north,))
    ns.south_tech = _user(session, acme, "southtech@acme.test", UserRole.TECHNICIAN, branches=(south,))
    ns.viewer = _user(session, acme, "viewer@acme.test", UserRole.VIEWER, branches=(north,))
    ns.globex_admin = _user(session, globex, "admin@globex.test", UserRole.TENANT_ADMIN)

    ns.filter = Product(tenant_id=acme.id, name="Filter cartridge", sku="FLT-1", price=Decimal("25.00"), stock_quantity=10, is_spare_part=True)
    ns.belt = Product(tenant_id=acme.id, name="Drive belt", sku="BLT-1", price=Decimal("40.00"), stock_quantity=2, is_spare_part=True)
    ns.globex_part = Product(tenant_id=globex.id, name="Globex valve", sku="GV-1", price=Decimal("5.00"), stock_quantity=50)
    session.add_all([ns.filter, ns.belt, ns.globex_part])
    session.commit()
    return ns


@pytest.fixture
def scope_for(session):
    resolver = AccessScopeResolver(session)

    def _scope(user, acting_tenant_id=None):
        return resolver.resolve(user, acting_tenant_id=acting_tenant_id)

    return _scope


@pytest.fixture
def make_contract(session, world):
    def _make(**overrides):
        fields = {
            "tenant_id": world.acme.id,
            "branch_id": world.north.id,
            "customer_name": "Cafe Aurora",
            "frequency": ContractFrequency.MONTHLY,
            "start_date": date(2024, 1, 1),
            "end_date": date(2024, 4, 30),
            "priority": VisitPriority.MEDIUM,
            "status": ContractStatus.ACTIVE,
            "assigned_technician_id": world.tech.id,
        }
        fields.update(overrides)
        contract = MaintenanceContract(**fields)
        session.add(contract)
        session.commit()
        return contract

    return _make
