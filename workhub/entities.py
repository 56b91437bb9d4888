"""
Marketplace records shared by every storage backend.

Records are frozen dataclasses: adapters hand out copies and are the only
place a new version of a record is produced.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional, Union

from workhub.errors import InvalidValueError

EntityId = Union[int, str]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, Enum):
    FREELANCER = "freelancer"
    EMPLOYER = "employer"


class ServiceStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class JobStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PaymentMethod(str, Enum):
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"


@dataclass(frozen=True)
class User:
    id: EntityId
    username: str
    email: str
    password: str
    full_name: str
    role: str = UserRole.FREELANCER.value
    bio: Optional[str] = None
    profile_picture: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def as_dict(self, *, include_password: bool = False) -> dict:
        data = asdict(self)
        if not include_password:
            data.pop("password")
        return data


@dataclass(frozen=True)
class Service:
    id: EntityId
    user_id: EntityId
    title: str
    description: str
    price: float
    category: str
    status: str = ServiceStatus.ACTIVE.value
    image: Optional[str] = None
    delivery_time: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Job:
    id: EntityId
    user_id: EntityId
    title: str
    description: str
    budget: float
    category: str
    job_type: str
    location: Optional[str] = None
    status: str = JobStatus.OPEN.value
    image: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Application:
    id: EntityId
    job_id: EntityId
    user_id: EntityId
    description: str
    resume_file: Optional[str] = None
    status: str = ApplicationStatus.PENDING.value
    created_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Order:
    id: EntityId
    service_id: EntityId
    buyer_id: EntityId
    seller_id: EntityId
    payment_method: str
    total_price: float
    status: str = "pending"
    created_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Review:
    id: EntityId
    service_id: EntityId
    user_id: EntityId
    rating: int
    comment: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def as_dict(self) -> dict:
        return asdict(self)


# Fields holding the id of another record.
REFERENCE_FIELDS = {"user_id", "job_id", "service_id", "buyer_id", "seller_id"}

# Fields no update may touch.
SERVER_FIELDS = {"id", "created_at"}

ENUM_FIELDS: dict[type, dict[str, type[Enum]]] = {
    User: {"role": UserRole},
    Service: {"status": ServiceStatus},
    Job: {"status": JobStatus},
    Application: {"status": ApplicationStatus},
    Order: {"payment_method": PaymentMethod},
    Review: {},
}


def field_names(entity: type) -> set[str]:
    return {f.name for f in fields(entity)}


def check_fields(entity: type, data: Mapping[str, Any]) -> None:
    """Reject keys that are not fields of ``entity``."""
    unknown = set(data) - field_names(entity)
    if unknown:
        raise InvalidValueError(
            f"Unknown {entity.__name__} field(s): {', '.join(sorted(unknown))}"
        )


def coerce_enums(entity: type, data: Mapping[str, Any]) -> dict:
    """
    Return a copy of ``data`` with enum-typed values reduced to their string
    value, raising InvalidValueError for values outside the declared domain.
    """
    result = dict(data)
    for name, enum_type in ENUM_FIELDS[entity].items():
        if name not in result or result[name] is None:
            continue
        try:
            result[name] = enum_type(result[name]).value
        except ValueError as exc:
            allowed = ", ".join(member.value for member in enum_type)
            raise InvalidValueError(
                f"Invalid {entity.__name__}.{name} {result[name]!r}; expected one of: {allowed}"
            ) from exc
    return result


def update_fields(entity: type, data: Mapping[str, Any]) -> dict:
    """Validate a partial update and drop server-assigned fields."""
    check_fields(entity, data)
    values = {k: v for k, v in data.items() if k not in SERVER_FIELDS}
    return coerce_enums(entity, values)


def matches(record: Any, filters: Optional[Mapping[str, Any]]) -> bool:
    """Exact-match conjunction used by the in-memory filters."""
    if not filters:
        return True
    return all(getattr(record, key) == value for key, value in filters.items())
