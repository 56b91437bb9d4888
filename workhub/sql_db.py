"""
SQLAlchemy (asyncio) implementation of the storage port.

Accepts any async SQLAlchemy URL: PostgreSQL through asyncpg in production,
SQLite through aiosqlite for local runs and tests.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Optional

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    select,
)
from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from workhub.db import (
    new_application_values,
    new_job_values,
    new_order_values,
    new_review_values,
    new_service_values,
    new_user_values,
    normalize_filters,
)
from workhub.entities import (
    REFERENCE_FIELDS,
    Application,
    ApplicationStatus,
    Job,
    JobStatus,
    Order,
    PaymentMethod,
    Review,
    Service,
    ServiceStatus,
    User,
    UserRole,
    field_names,
    update_fields,
    utcnow,
)
from workhub.errors import BackendUnavailableError, DuplicateKeyError, InvalidValueError
from workhub.ids import NumericKeyResolver

logger = logging.getLogger(__name__)

Base = declarative_base()

# Upper bound of the 32-bit Integer primary and foreign key columns.
INTEGER_KEY_MAX = 2**31 - 1


def _enum(enum_type, name: str) -> Enum:
    return Enum(
        *[member.value for member in enum_type],
        name=name,
        validate_strings=True,
        create_constraint=True,
    )


class UserRow(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(255), nullable=False, unique=True)
    password = Column(Text, nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    full_name = Column(String(255), nullable=False)
    role = Column(_enum(UserRole, "user_role"), nullable=False, default="freelancer")
    bio = Column(Text, nullable=True)
    profile_picture = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class ServiceRow(Base):
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    price = Column(Float, nullable=False)
    category = Column(String(255), nullable=False, index=True)
    status = Column(
        _enum(ServiceStatus, "service_status"), nullable=False, default="active", index=True
    )
    image = Column(Text, nullable=True)
    delivery_time = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class JobRow(Base):
    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    budget = Column(Float, nullable=False)
    category = Column(String(255), nullable=False, index=True)
    location = Column(Text, nullable=True)
    job_type = Column(String(64), nullable=False)
    status = Column(_enum(JobStatus, "job_status"), nullable=False, default="open", index=True)
    image = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class ApplicationRow(Base):
    __tablename__ = "applications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    description = Column(Text, nullable=False)
    resume_file = Column(Text, nullable=True)
    status = Column(
        _enum(ApplicationStatus, "application_status"), nullable=False, default="pending"
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class OrderRow(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False, index=True)
    buyer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    payment_method = Column(_enum(PaymentMethod, "payment_method"), nullable=False)
    total_price = Column(Float, nullable=False)
    status = Column(String(64), nullable=False, default="pending")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class ReviewRow(Base):
    __tablename__ = "reviews"
    __table_args__ = (UniqueConstraint("user_id", "service_id", name="uq_review_user_service"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


ROWS: dict[type, type] = {
    User: UserRow,
    Service: ServiceRow,
    Job: JobRow,
    Application: ApplicationRow,
    Order: OrderRow,
    Review: ReviewRow,
}


@contextmanager
def backend_errors(entity: str) -> Iterator[None]:
    """Translate driver exceptions into the storage error taxonomy."""
    try:
        yield
    except sa_exc.IntegrityError as exc:
        message = str(exc.orig).lower()
        if "unique" in message or "duplicate" in message:
            raise DuplicateKeyError(entity, _unique_fields(entity, message)) from exc
        raise InvalidValueError(f"{entity} rejected by the database: {exc.orig}") from exc
    except (sa_exc.OperationalError, sa_exc.InterfaceError, OSError) as exc:
        raise BackendUnavailableError(f"Database unavailable: {exc}") from exc


def _unique_fields(entity: str, message: str) -> list[str]:
    if entity == "Review":
        return ["user_id", "service_id"]
    found = [name for name in ("username", "email") if name in message]
    return found or ["key"]


class SqlDbClient:
    """Storage port on relational tables with integer primary keys."""

    kind = "sql"

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlDbClient")
        options: dict[str, Any] = {"pool_pre_ping": True}
        if ":memory:" in database_url:
            options["poolclass"] = StaticPool
        self.engine = create_async_engine(database_url, **options)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        self.Session = async_sessionmaker(self.engine, expire_on_commit=False)
        self.resolver = NumericKeyResolver(max_value=INTEGER_KEY_MAX)

    async def init_schema(self) -> None:
        """Create missing tables; raises BackendUnavailableError when the database is down."""
        with backend_errors("schema"):
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    @staticmethod
    def _to_record(entity: type, row: Any):
        return entity(**{name: getattr(row, name) for name in field_names(entity)})

    def _references_ok(self, values: Mapping[str, Any]) -> bool:
        return all(
            self.resolver.resolve(value) is not None
            for key, value in values.items()
            if key in REFERENCE_FIELDS
        )

    async def _get(self, entity: type, record_id: Any):
        key = self.resolver.resolve(record_id)
        if key is None:
            logger.debug("Id %r is not addressable in SQL storage", record_id)
            return None
        try:
            with backend_errors(entity.__name__):
                async with self.Session() as session:
                    row = await session.get(ROWS[entity], key)
        except BackendUnavailableError:
            raise
        except sa_exc.SQLAlchemyError:
            logger.warning("Error getting %s %r", entity.__name__, record_id, exc_info=True)
            return None
        return self._to_record(entity, row) if row else None

    async def _select(self, entity: type, *conditions) -> list:
        row_type = ROWS[entity]
        stmt = select(row_type).where(*conditions).order_by(row_type.id.asc())
        try:
            with backend_errors(entity.__name__):
                async with self.Session() as session:
                    rows = (await session.execute(stmt)).scalars().all()
        except BackendUnavailableError:
            raise
        except sa_exc.SQLAlchemyError:
            logger.warning("Error listing %s", entity.__name__, exc_info=True)
            return []
        return [self._to_record(entity, row) for row in rows]

    async def _filter(self, entity: type, filters: Optional[Mapping[str, Any]]) -> list:
        criteria = normalize_filters(entity, filters)
        if not self._references_ok(criteria):
            return []
        row_type = ROWS[entity]
        return await self._select(
            entity, *[getattr(row_type, key) == value for key, value in criteria.items()]
        )

    async def _insert(self, entity: type, values: Mapping[str, Any]):
        if not self._references_ok(values):
            raise InvalidValueError(f"{entity.__name__} references must be numeric ids")
        values = {
            key: self.resolver.resolve(value) if key in REFERENCE_FIELDS else value
            for key, value in values.items()
        }
        row = ROWS[entity](**values, created_at=utcnow())
        with backend_errors(entity.__name__):
            async with self.Session() as session:
                session.add(row)
                await session.commit()
                await session.refresh(row)
        return self._to_record(entity, row)

    async def _update(self, entity: type, record_id: Any, values: Mapping[str, Any]):
        key = self.resolver.resolve(record_id)
        if key is None:
            return None
        if not self._references_ok(values):
            raise InvalidValueError(f"{entity.__name__} references must be numeric ids")
        with backend_errors(entity.__name__):
            async with self.Session() as session:
                row = await session.get(ROWS[entity], key)
                if not row:
                    logger.info("Could not find %s with id %r to update", entity.__name__, record_id)
                    return None
                for name, value in values.items():
                    if name in REFERENCE_FIELDS:
                        value = self.resolver.resolve(value)
                    setattr(row, name, value)
                await session.commit()
                await session.refresh(row)
        return self._to_record(entity, row)

    # -------------------------- users --------------------------
    async def get_user(self, user_id: Any) -> Optional[User]:
        return await self._get(User, user_id)

    async def get_user_by_username(self, username: str) -> Optional[User]:
        users = await self._select(User, UserRow.username == username)
        return users[0] if users else None

    async def get_user_by_email(self, email: str) -> Optional[User]:
        users = await self._select(User, UserRow.email == email)
        return users[0] if users else None

    async def create_user(self, user: Mapping[str, Any]) -> User:
        return await self._insert(User, new_user_values(user))

    async def update_user(self, user_id: Any, data: Mapping[str, Any]) -> Optional[User]:
        return await self._update(User, user_id, update_fields(User, data))

    # -------------------------- services --------------------------
    async def get_service(self, service_id: Any) -> Optional[Service]:
        return await self._get(Service, service_id)

    async def get_services(self, filters: Optional[Mapping[str, Any]] = None) -> list[Service]:
        return await self._filter(Service, filters)

    async def get_user_services(self, user_id: Any) -> list[Service]:
        return await self._filter(Service, {"user_id": user_id})

    async def create_service(self, user_id: Any, service: Mapping[str, Any]) -> Service:
        return await self._insert(Service, new_service_values(user_id, service))

    async def update_service(self, service_id: Any, data: Mapping[str, Any]) -> Optional[Service]:
        return await self._update(Service, service_id, update_fields(Service, data))

    # -------------------------- jobs --------------------------
    async def get_job(self, job_id: Any) -> Optional[Job]:
        return await self._get(Job, job_id)

    async def get_jobs(self, filters: Optional[Mapping[str, Any]] = None) -> list[Job]:
        return await self._filter(Job, filters)

    async def get_user_jobs(self, user_id: Any) -> list[Job]:
        return await self._filter(Job, {"user_id": user_id})

    async def create_job(self, user_id: Any, job: Mapping[str, Any]) -> Job:
        return await self._insert(Job, new_job_values(user_id, job))

    async def update_job(self, job_id: Any, data: Mapping[str, Any]) -> Optional[Job]:
        return await self._update(Job, job_id, update_fields(Job, data))

    # -------------------------- applications --------------------------
    async def get_application(self, application_id: Any) -> Optional[Application]:
        return await self._get(Application, application_id)

    async def get_applications_for_job(self, job_id: Any) -> list[Application]:
        return await self._filter(Application, {"job_id": job_id})

    async def get_user_applications(self, user_id: Any) -> list[Application]:
        return await self._filter(Application, {"user_id": user_id})

    async def create_application(
        self, user_id: Any, application: Mapping[str, Any]
    ) -> Application:
        return await self._insert(Application, new_application_values(user_id, application))

    async def update_application_status(
        self, application_id: Any, status: str
    ) -> Optional[Application]:
        values = update_fields(Application, {"status": status})
        return await self._update(Application, application_id, values)

    # -------------------------- orders --------------------------
    async def get_orders_for_service(self, service_id: Any) -> list[Order]:
        return await self._filter(Order, {"service_id": service_id})

    async def get_user_orders(self, user_id: Any) -> list[Order]:
        key = self.resolver.resolve(user_id)
        if key is None:
            return []
        as_buyer = await self._select(Order, OrderRow.buyer_id == key)
        as_seller = await self._select(Order, OrderRow.seller_id == key)
        return as_buyer + as_seller

    async def create_order(self, buyer_id: Any, order: Mapping[str, Any]) -> Order:
        return await self._insert(Order, new_order_values(buyer_id, order))

    # -------------------------- reviews --------------------------
    async def get_reviews_for_service(self, service_id: Any) -> list[Review]:
        return await self._filter(Review, {"service_id": service_id})

    async def create_review(self, user_id: Any, review: Mapping[str, Any]) -> Review:
        return await self._insert(Review, new_review_values(user_id, review))


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
