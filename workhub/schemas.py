"""
Pydantic schemas for the marketplace API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, Field

from workhub.entities import (
    ApplicationStatus,
    JobStatus,
    PaymentMethod,
    ServiceStatus,
    UserRole,
)

RecordId = Union[int, str]

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: str = Field(..., max_length=254, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=6, max_length=128)
    full_name: str = Field(..., min_length=1, max_length=100)
    role: UserRole = UserRole.FREELANCER
    bio: Optional[str] = Field(default=None, max_length=2000)


class LoginRequest(BaseModel):
    username: str
    password: str


class UserUpdateRequest(BaseModel):
    email: Optional[str] = Field(default=None, max_length=254, pattern=EMAIL_PATTERN)
    full_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    bio: Optional[str] = Field(default=None, max_length=2000)


class UserResponse(BaseModel):
    id: RecordId
    username: str
    email: str
    full_name: str
    role: str
    bio: Optional[str] = None
    profile_picture: Optional[str] = None
    created_at: datetime


class ServiceCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    price: float = Field(..., gt=0)
    category: str = Field(..., min_length=1, max_length=100)
    status: ServiceStatus = ServiceStatus.ACTIVE
    image: Optional[str] = None
    delivery_time: Optional[str] = Field(default=None, max_length=100)


class ServiceUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, min_length=1)
    price: Optional[float] = Field(default=None, gt=0)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    status: Optional[ServiceStatus] = None
    image: Optional[str] = None
    delivery_time: Optional[str] = Field(default=None, max_length=100)


class ServiceResponse(BaseModel):
    id: RecordId
    user_id: RecordId
    title: str
    description: str
    price: float
    category: str
    status: str
    image: Optional[str] = None
    delivery_time: Optional[str] = None
    created_at: datetime


class JobCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    budget: float = Field(..., gt=0)
    category: str = Field(..., min_length=1, max_length=100)
    job_type: str = Field(..., min_length=1, max_length=50)
    location: Optional[str] = Field(default=None, max_length=200)
    image: Optional[str] = None


class JobUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, min_length=1)
    budget: Optional[float] = Field(default=None, gt=0)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    job_type: Optional[str] = Field(default=None, min_length=1, max_length=50)
    location: Optional[str] = Field(default=None, max_length=200)
    status: Optional[JobStatus] = None
    image: Optional[str] = None


class JobResponse(BaseModel):
    id: RecordId
    user_id: RecordId
    title: str
    description: str
    budget: float
    category: str
    job_type: str
    location: Optional[str] = None
    status: str
    image: Optional[str] = None
    created_at: datetime


class ApplicationStatusRequest(BaseModel):
    status: ApplicationStatus


class ApplicationResponse(BaseModel):
    id: RecordId
    job_id: RecordId
    user_id: RecordId
    description: str
    resume_file: Optional[str] = None
    status: str
    created_at: datetime


class OrderCreateRequest(BaseModel):
    payment_method: PaymentMethod
    total_price: Optional[float] = Field(default=None, gt=0)


class OrderResponse(BaseModel):
    id: RecordId
    service_id: RecordId
    buyer_id: RecordId
    seller_id: RecordId
    payment_method: str
    total_price: float
    status: str
    created_at: datetime


class ReviewCreateRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=2000)


class ReviewResponse(BaseModel):
    id: RecordId
    service_id: RecordId
    user_id: RecordId
    rating: int
    comment: Optional[str] = None
    created_at: datetime


class SystemInfoResponse(BaseModel):
    storage: str
    backend: str
