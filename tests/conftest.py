"""
Shared pytest fixtures for the request workflow test suite.

Provides:
    - app: Flask application (session-scoped, in-memory SQLite)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user / make_member / make_plan_type / make_plan: committed factories
    - staff: one user per role, by id

Factories commit: a service that fails rolls the session back, and the
fixtures must survive that.
"""

import itertools
from decimal import Decimal
from types import SimpleNamespace

import pytest

from coopflow import create_app
from coopflow.models import db as _db
from coopflow.models.auth import ADMIN, CHAIRMAN, MEMBER, SUPER_ADMIN, TREASURER, User
from coopflow.models.member import MEMBERSHIP_ACTIVE, Member
from coopflow.models.savings import PLAN_ACTIVE, PersonalSavings, PersonalSavingsPlanType
from coopflow.services.role_directory import assign_role, seed_default_roles


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, seed roles, rollback + recreate tables after."""
    with app.app_context():
        seed_default_roles()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    counter = itertools.count(1)

    def _make(*roles, username=None):
        n = next(counter)
        user = User(
            username=username or f"user{n}",
            full_name=f"Test User {n}",
            email=f"user{n}@coop.test",
        )
        _db.session.add(user)
        _db.session.flush()
        for role in roles:
            assign_role(user.id, role)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def make_member():
    counter = itertools.count(1)

    def _make(user_id=None, status=MEMBERSHIP_ACTIVE, erp_id=None, is_approved=True):
        n = next(counter)
        member = Member(
            erp_id=erp_id or f"ERP-{n:04d}",
            full_name=f"Member {n}",
            department="Finance",
            email_address=f"member{n}@coop.test",
            phone_number="08000000000",
            user_id=user_id,
            is_approved=is_approved,
            membership_status=status,
        )
        _db.session.add(member)
        _db.session.commit()
        return member

    return _make


@pytest.fixture()
def make_plan_type():
    def _make(name="Christmas Savings", is_active=True):
        plan_type = PersonalSavingsPlanType(name=name, description=f"{name} plan", is_active=is_active)
        _db.session.add(plan_type)
        _db.session.commit()
        return plan_type

    return _make


@pytest.fixture()
def make_plan():
    def _make(member, plan_type, balance="10000", status=PLAN_ACTIVE, name="My Plan"):
        plan = PersonalSavings(
            erp_id=member.erp_id,
            member_id=member.id,
            plan_type_id=plan_type.id,
            plan_name=name,
            current_balance=Decimal(balance),
            status=status,
        )
        _db.session.add(plan)
        _db.session.commit()
        return plan

    return _make


@pytest.fixture()
def staff(make_user):
    """One user per role. Attributes are user ids."""
    return SimpleNamespace(
        super_admin=make_user(SUPER_ADMIN, username="root").id,
        chairman=make_user(CHAIRMAN, username="chairman").id,
        treasurer=make_user(TREASURER, username="treasurer").id,
        admin=make_user(ADMIN, username="admin").id,
        member=make_user(MEMBER, username="member").id,
    )


@pytest.fixture()
def member_record(staff, make_member):
    """ACTIVE member biodata linked to the ``staff.member`` user."""
    return make_member(user_id=staff.member)
