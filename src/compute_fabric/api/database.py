from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum as SQLEnum,
    Numeric,
    String,
    Text,
    create_engine,
    text,
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from compute_fabric.api.models import JobStatus, PaymentStatus, ProviderStatus
from compute_fabric.core.exceptions import TransientStoreError
from compute_fabric.core.logging import get_logger
from compute_fabric.core.time import utcnow

LOGGER = get_logger(__name__)

Base = declarative_base()


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class JobDB(Base):
    __tablename__ = "jobs"

    job_id = Column(String, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    provider_id = Column(String, index=True, nullable=True)
    docker_image = Column(String(255), nullable=False)
    command = Column(Text, nullable=True)
    status = Column(
        SQLEnum(JobStatus, values_callable=_enum_values, native_enum=False, length=32),
        default=JobStatus.QUEUED,
        nullable=False,
        index=True,
    )
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)
    cost = Column(Numeric(10, 2), default=0, nullable=False)


class ProviderDB(Base):
    __tablename__ = "providers"

    provider_id = Column(String, primary_key=True, index=True)
    owner_id = Column(String, index=True, nullable=True)
    status = Column(
        SQLEnum(ProviderStatus, values_callable=_enum_values, native_enum=False, length=32),
        default=ProviderStatus.OFFLINE,
        nullable=False,
        index=True,
    )
    gpu_specs = Column(JSON, default=dict)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class PaymentDB(Base):
    __tablename__ = "payments"

    payment_id = Column(String, primary_key=True, index=True)
    job_id = Column(String, index=True, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(
        SQLEnum(PaymentStatus, values_callable=_enum_values, native_enum=False, length=32),
        default=PaymentStatus.PENDING,
        nullable=False,
    )
    simulated = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)


def is_in_memory_sqlite(url: str) -> bool:
    parsed = make_url(url)
    return parsed.drivername.startswith("sqlite") and parsed.database in (None, "", ":memory:")


def _engine_options(url: str) -> Dict[str, Any]:
    parsed = make_url(url)
    if not parsed.drivername.startswith("sqlite"):
        return {"pool_pre_ping": True}

    options: Dict[str, Any] = {"connect_args": {"check_same_thread": False, "timeout": 30}}
    if is_in_memory_sqlite(url):
        # Test-only: every session shares one connection, so concurrent
        # sessions (scheduler thread plus request threads) must not overlap.
        options["poolclass"] = StaticPool
    else:
        Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
    return options


class Database:
    """Engine and session factory for one database URL."""

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self.url = url
        self.engine = create_engine(url, echo=echo, **_engine_options(url))
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )

    def init_db(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.SessionLocal()
        try:
            yield db
        finally:
            db.close()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Session committed on success, rolled back on error.

        Connectivity failures surface as :class:`TransientStoreError`.
        """
        try:
            with self.session() as db:
                try:
                    yield db
                    db.commit()
                except Exception:
                    db.rollback()
                    raise
        except (OperationalError, InterfaceError) as exc:
            LOGGER.error(f"Database unavailable: {exc}")
            raise TransientStoreError("Store temporarily unavailable", metadata={"cause": str(exc.orig)}) from exc

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def dispose(self) -> None:
        self.engine.dispose()
