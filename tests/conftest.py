import sys
from collections.abc import Callable, Generator
from decimal import Decimal
from pathlib import Path
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from condoportal.config import Base  # noqa: E402
import condoportal.config as app_config  # noqa: E402
import condoportal.main as app_main  # noqa: E402
from condoportal.auth.jwt import get_password_hash  # noqa: E402
from condoportal.core.rate_limit import limiter  # noqa: E402
# Import the full models module so all tables (including audit_logs) register with Base metadata.
from condoportal.models import models as _all_models  # noqa: E402,F401
from condoportal.models.models import Condominium, Profile, Resident, User  # noqa: E402
from condoportal.services.change_feed import change_feed  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def _configure_global_test_db(tmp_path_factory):
    """Configure the app-wide SessionLocal/engine so TestClient uses a DB with all tables."""
    db_dir = tmp_path_factory.mktemp("globaldb")
    db_path = db_dir / "app.db"
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    app_config.SessionLocal = SessionLocal
    app_config.engine = engine
    app_main.SessionLocal = SessionLocal
    app_main.engine = engine
    app_config.settings.pdf_output_dir = str(db_dir / "pdfs")
    yield
    engine.dispose()


@pytest.fixture(autouse=True)
def _inline_change_feed() -> Generator[None, None, None]:
    """Run triggers on the committing thread and start every test without subscribers."""
    previous = change_feed.dispatch
    change_feed.dispatch = "inline"
    change_feed.clear()
    limiter.reset()
    yield
    change_feed.clear()
    change_feed.dispatch = previous


@pytest.fixture
def db_engine(tmp_path):
    db_path = tmp_path / "test.db"
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> sessionmaker:
    return sessionmaker(bind=db_engine)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    """Provide a fresh SQLite database for each test."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def create_condominium(db_session: Session) -> Callable[..., Condominium]:
    counter = {"value": 0}

    def _create(
        name: str = "Condomínio Teste",
        fee: Decimal = Decimal("25000.00"),
        currency: str = "AOA",
        linking_code: Optional[str] = None,
    ) -> Condominium:
        counter["value"] += 1
        condominium = Condominium(
            name=f"{name} {counter['value']}",
            address=f"Rua {counter['value']}, Luanda",
            currency=currency,
            current_monthly_fee=fee,
            resident_linking_code=linking_code or f"CODE{counter['value']:04d}",
        )
        db_session.add(condominium)
        db_session.commit()
        return condominium

    return _create


@pytest.fixture
def create_user(db_session: Session) -> Callable[..., User]:
    counter = {"value": 0}

    def _create(
        email: Optional[str] = None,
        role: str = "coordinator",
        condominium: Optional[Condominium] = None,
        first_name: str = "Test",
        last_name: str = "User",
        password: str = "changeme",
    ) -> User:
        counter["value"] += 1
        user = User(
            email=email or f"user{counter['value']}@example.com",
            hashed_password=get_password_hash(password),
        )
        # Added with its profile in one commit so the provisioning trigger skips it.
        user.profile = Profile(
            role=role,
            condominium_id=condominium.id if condominium else None,
            first_name=first_name,
            last_name=last_name,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _create


@pytest.fixture
def create_resident(db_session: Session, create_user) -> Callable[..., Resident]:
    def _create(condominium: Condominium, apartment: str = "101", first_name: str = "Ana") -> Resident:
        user = create_user(role="resident", condominium=condominium, first_name=first_name, last_name="Silva")
        resident = Resident(
            profile_id=user.profile.id,
            condominium_id=condominium.id,
            apartment_number=apartment,
        )
        db_session.add(resident)
        db_session.commit()
        return resident

    return _create
