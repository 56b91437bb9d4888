"""
Storage port for the marketplace and its in-memory implementation.
"""

from __future__ import annotations

import dataclasses
import itertools
import logging
from typing import Any, Dict, Iterator, Mapping, Optional, Protocol

from workhub.entities import (
    REFERENCE_FIELDS,
    Application,
    ApplicationStatus,
    Job,
    JobStatus,
    Order,
    Review,
    Service,
    ServiceStatus,
    User,
    UserRole,
    check_fields,
    coerce_enums,
    matches,
    update_fields,
    utcnow,
)
from workhub.errors import DuplicateKeyError
from workhub.ids import NumericKeyResolver, normalize_reference

logger = logging.getLogger(__name__)


class DbClient(Protocol):
    """
    Operations every backend implements with the same observable behaviour.

    Single-record lookups and updates return ``None`` when the id resolves to
    nothing; list queries return ``[]``. ``create_*`` always returns the full
    record with its assigned id and timestamp, or raises.
    """

    kind: str

    # users
    async def get_user(self, user_id: Any) -> Optional[User]:
        ...

    async def get_user_by_username(self, username: str) -> Optional[User]:
        ...

    async def get_user_by_email(self, email: str) -> Optional[User]:
        ...

    async def create_user(self, user: Mapping[str, Any]) -> User:
        ...

    async def update_user(self, user_id: Any, data: Mapping[str, Any]) -> Optional[User]:
        ...

    # services
    async def get_service(self, service_id: Any) -> Optional[Service]:
        ...

    async def get_services(self, filters: Optional[Mapping[str, Any]] = None) -> list[Service]:
        ...

    async def get_user_services(self, user_id: Any) -> list[Service]:
        ...

    async def create_service(self, user_id: Any, service: Mapping[str, Any]) -> Service:
        ...

    async def update_service(self, service_id: Any, data: Mapping[str, Any]) -> Optional[Service]:
        ...

    # jobs
    async def get_job(self, job_id: Any) -> Optional[Job]:
        ...

    async def get_jobs(self, filters: Optional[Mapping[str, Any]] = None) -> list[Job]:
        ...

    async def get_user_jobs(self, user_id: Any) -> list[Job]:
        ...

    async def create_job(self, user_id: Any, job: Mapping[str, Any]) -> Job:
        ...

    async def update_job(self, job_id: Any, data: Mapping[str, Any]) -> Optional[Job]:
        ...

    # applications
    async def get_application(self, application_id: Any) -> Optional[Application]:
        ...

    async def get_applications_for_job(self, job_id: Any) -> list[Application]:
        ...

    async def get_user_applications(self, user_id: Any) -> list[Application]:
        ...

    async def create_application(
        self, user_id: Any, application: Mapping[str, Any]
    ) -> Application:
        ...

    async def update_application_status(
        self, application_id: Any, status: str
    ) -> Optional[Application]:
        ...

    # orders
    async def get_orders_for_service(self, service_id: Any) -> list[Order]:
        ...

    async def get_user_orders(self, user_id: Any) -> list[Order]:
        ...

    async def create_order(self, buyer_id: Any, order: Mapping[str, Any]) -> Order:
        ...

    # reviews
    async def get_reviews_for_service(self, service_id: Any) -> list[Review]:
        ...

    async def create_review(self, user_id: Any, review: Mapping[str, Any]) -> Review:
        ...


def new_user_values(user: Mapping[str, Any]) -> dict:
    """Field values for a new user with the defaults every backend applies."""
    check_fields(User, user)
    values = {k: v for k, v in user.items() if k not in ("id", "created_at")}
    values["role"] = values.get("role") or UserRole.FREELANCER.value
    values["bio"] = values.get("bio") or None
    values["profile_picture"] = values.get("profile_picture") or None
    return coerce_enums(User, values)


def new_service_values(user_id: Any, service: Mapping[str, Any]) -> dict:
    check_fields(Service, service)
    values = {k: v for k, v in service.items() if k not in ("id", "created_at")}
    values["user_id"] = normalize_reference(user_id)
    values["status"] = values.get("status") or ServiceStatus.ACTIVE.value
    values["image"] = values.get("image") or None
    values["delivery_time"] = values.get("delivery_time") or None
    return coerce_enums(Service, values)


def new_job_values(user_id: Any, job: Mapping[str, Any]) -> dict:
    check_fields(Job, job)
    values = {k: v for k, v in job.items() if k not in ("id", "created_at")}
    values["user_id"] = normalize_reference(user_id)
    values["status"] = values.get("status") or JobStatus.OPEN.value
    values["image"] = values.get("image") or None
    values["location"] = values.get("location") or None
    return coerce_enums(Job, values)


def new_application_values(user_id: Any, application: Mapping[str, Any]) -> dict:
    check_fields(Application, application)
    values = {
        k: v for k, v in application.items() if k not in ("id", "created_at", "status")
    }
    values["user_id"] = normalize_reference(user_id)
    values["job_id"] = normalize_reference(values.get("job_id"))
    values["status"] = ApplicationStatus.PENDING.value
    values["resume_file"] = values.get("resume_file") or None
    return values


def new_order_values(buyer_id: Any, order: Mapping[str, Any]) -> dict:
    check_fields(Order, order)
    values = {k: v for k, v in order.items() if k not in ("id", "created_at", "status")}
    values["buyer_id"] = normalize_reference(buyer_id)
    values["service_id"] = normalize_reference(values.get("service_id"))
    values["seller_id"] = normalize_reference(values.get("seller_id"))
    values["status"] = "pending"
    return coerce_enums(Order, values)


def new_review_values(user_id: Any, review: Mapping[str, Any]) -> dict:
    check_fields(Review, review)
    values = {k: v for k, v in review.items() if k not in ("id", "created_at")}
    values["user_id"] = normalize_reference(user_id)
    values["service_id"] = normalize_reference(values.get("service_id"))
    values["comment"] = values.get("comment") or None
    return values


def normalize_filters(entity: type, filters: Optional[Mapping[str, Any]]) -> dict:
    """Validate a partial-record filter; reference values are canonicalised."""
    if not filters:
        return {}
    check_fields(entity, filters)
    values = {
        key: normalize_reference(value) if key in REFERENCE_FIELDS else value
        for key, value in filters.items()
    }
    return coerce_enums(entity, values)


class InMemoryDbClient:
    """Process-local maps keyed by auto-incrementing integers. Default and test backend."""

    kind = "memory"

    def __init__(self):
        self.resolver = NumericKeyResolver()
        self.users: Dict[int, User] = {}
        self.services: Dict[int, Service] = {}
        self.jobs: Dict[int, Job] = {}
        self.applications: Dict[int, Application] = {}
        self.orders: Dict[int, Order] = {}
        self.reviews: Dict[int, Review] = {}
        self._counters: Dict[str, Iterator[int]] = {}
        self.reset()

    def reset(self) -> None:
        """Clear all stored data and restart ids at 1 (useful in tests)."""
        for table in (
            self.users,
            self.services,
            self.jobs,
            self.applications,
            self.orders,
            self.reviews,
        ):
            table.clear()
        self._counters = {
            name: itertools.count(1)
            for name in ("users", "services", "jobs", "applications", "orders", "reviews")
        }

    def _next_id(self, table: str) -> int:
        return next(self._counters[table])

    def _lookup(self, table: Dict[int, Any], record_id: Any) -> Optional[Any]:
        key = self.resolver.resolve(record_id)
        if key is None:
            logger.debug("Id %r is not addressable in memory storage", record_id)
            return None
        return table.get(key)

    def _update(self, table: Dict[int, Any], record_id: Any, values: dict) -> Optional[Any]:
        existing = self._lookup(table, record_id)
        if existing is None:
            return None
        updated = dataclasses.replace(existing, **values)
        table[existing.id] = updated
        return updated

    # -------------------------- users --------------------------
    async def get_user(self, user_id: Any) -> Optional[User]:
        return self._lookup(self.users, user_id)

    async def get_user_by_username(self, username: str) -> Optional[User]:
        return next((u for u in self.users.values() if u.username == username), None)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        return next((u for u in self.users.values() if u.email == email), None)

    async def create_user(self, user: Mapping[str, Any]) -> User:
        values = new_user_values(user)
        for field_name in ("username", "email"):
            if any(
                getattr(existing, field_name) == values.get(field_name)
                for existing in self.users.values()
            ):
                raise DuplicateKeyError("User", [field_name])
        record = User(id=self._next_id("users"), created_at=utcnow(), **values)
        self.users[record.id] = record
        return record

    async def update_user(self, user_id: Any, data: Mapping[str, Any]) -> Optional[User]:
        values = update_fields(User, data)
        existing = self._lookup(self.users, user_id)
        if existing is None:
            return None
        for field_name in ("username", "email"):
            if field_name not in values:
                continue
            if any(
                getattr(other, field_name) == values[field_name] and other.id != existing.id
                for other in self.users.values()
            ):
                raise DuplicateKeyError("User", [field_name])
        return self._update(self.users, existing.id, values)

    # -------------------------- services --------------------------
    async def get_service(self, service_id: Any) -> Optional[Service]:
        return self._lookup(self.services, service_id)

    async def get_services(self, filters: Optional[Mapping[str, Any]] = None) -> list[Service]:
        criteria = normalize_filters(Service, filters)
        return [s for s in self.services.values() if matches(s, criteria)]

    async def get_user_services(self, user_id: Any) -> list[Service]:
        return await self.get_services({"user_id": user_id})

    async def create_service(self, user_id: Any, service: Mapping[str, Any]) -> Service:
        values = new_service_values(user_id, service)
        record = Service(id=self._next_id("services"), created_at=utcnow(), **values)
        self.services[record.id] = record
        return record

    async def update_service(self, service_id: Any, data: Mapping[str, Any]) -> Optional[Service]:
        return self._update(self.services, service_id, update_fields(Service, data))

    # -------------------------- jobs --------------------------
    async def get_job(self, job_id: Any) -> Optional[Job]:
        return self._lookup(self.jobs, job_id)

    async def get_jobs(self, filters: Optional[Mapping[str, Any]] = None) -> list[Job]:
        criteria = normalize_filters(Job, filters)
        return [j for j in self.jobs.values() if matches(j, criteria)]

    async def get_user_jobs(self, user_id: Any) -> list[Job]:
        return await self.get_jobs({"user_id": user_id})

    async def create_job(self, user_id: Any, job: Mapping[str, Any]) -> Job:
        values = new_job_values(user_id, job)
        record = Job(id=self._next_id("jobs"), created_at=utcnow(), **values)
        self.jobs[record.id] = record
        return record

    async def update_job(self, job_id: Any, data: Mapping[str, Any]) -> Optional[Job]:
        return self._update(self.jobs, job_id, update_fields(Job, data))

    # -------------------------- applications --------------------------
    async def get_application(self, application_id: Any) -> Optional[Application]:
        return self._lookup(self.applications, application_id)

    async def get_applications_for_job(self, job_id: Any) -> list[Application]:
        criteria = normalize_filters(Application, {"job_id": job_id})
        return [a for a in self.applications.values() if matches(a, criteria)]

    async def get_user_applications(self, user_id: Any) -> list[Application]:
        criteria = normalize_filters(Application, {"user_id": user_id})
        return [a for a in self.applications.values() if matches(a, criteria)]

    async def create_application(
        self, user_id: Any, application: Mapping[str, Any]
    ) -> Application:
        values = new_application_values(user_id, application)
        record = Application(
            id=self._next_id("applications"), created_at=utcnow(), **values
        )
        self.applications[record.id] = record
        return record

    async def update_application_status(
        self, application_id: Any, status: str
    ) -> Optional[Application]:
        values = update_fields(Application, {"status": status})
        return self._update(self.applications, application_id, values)

    # -------------------------- orders --------------------------
    async def get_orders_for_service(self, service_id: Any) -> list[Order]:
        criteria = normalize_filters(Order, {"service_id": service_id})
        return [o for o in self.orders.values() if matches(o, criteria)]

    async def get_user_orders(self, user_id: Any) -> list[Order]:
        key = normalize_reference(user_id)
        return [o for o in self.orders.values() if key in (o.buyer_id, o.seller_id)]

    async def create_order(self, buyer_id: Any, order: Mapping[str, Any]) -> Order:
        values = new_order_values(buyer_id, order)
        record = Order(id=self._next_id("orders"), created_at=utcnow(), **values)
        self.orders[record.id] = record
        return record

    # -------------------------- reviews --------------------------
    async def get_reviews_for_service(self, service_id: Any) -> list[Review]:
        criteria = normalize_filters(Review, {"service_id": service_id})
        return [r for r in self.reviews.values() if matches(r, criteria)]

    async def create_review(self, user_id: Any, review: Mapping[str, Any]) -> Review:
        values = new_review_values(user_id, review)
        if any(
            r.user_id == values["user_id"] and r.service_id == values["service_id"]
            for r in self.reviews.values()
        ):
            raise DuplicateKeyError("Review", ["user_id", "service_id"])
        record = Review(id=self._next_id("reviews"), created_at=utcnow(), **values)
        self.reviews[record.id] = record
        return record
