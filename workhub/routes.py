"""
HTTP routes for the marketplace API.

Business rules live here; storage is only reached with input that already
satisfies them.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, Query, UploadFile

from workhub.db import DbClient
from workhub.dependencies import BackendSelector, get_db_client, get_selector, get_upload_client
from workhub.entities import JobStatus, ServiceStatus, User
from workhub.ids import normalize_reference
from workhub.schemas import (
    ApplicationResponse,
    ApplicationStatusRequest,
    JobCreateRequest,
    JobResponse,
    JobUpdateRequest,
    LoginRequest,
    OrderCreateRequest,
    OrderResponse,
    RegisterRequest,
    ReviewCreateRequest,
    ReviewResponse,
    ServiceCreateRequest,
    ServiceResponse,
    ServiceUpdateRequest,
    SystemInfoResponse,
    UserResponse,
    UserUpdateRequest,
)
from workhub.security import hash_password, verify_password
from workhub.storage import UploadClient

logger = logging.getLogger(__name__)

router = APIRouter()


def _same_id(left: Any, right: Any) -> bool:
    return str(normalize_reference(left)) == str(normalize_reference(right))


async def get_current_user(
    x_user_id: str | None = Header(None),
    db: DbClient = Depends(get_db_client),
) -> User:
    """Resolve the acting user from the ``X-User-Id`` header."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header required")
    user = await db.get_user(x_user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Unknown user")
    return user


async def _require_self(db: DbClient, current: User, user_id: str) -> None:
    """Resolve ``user_id`` and require it to name the acting user."""
    target = await _load_user(db, user_id)
    if not _same_id(current.id, target.id):
        raise HTTPException(status_code=403, detail="Not allowed for another user")


def _require_owner(current: User, owner_id: Any, what: str) -> None:
    if not _same_id(current.id, owner_id):
        raise HTTPException(status_code=403, detail=f"Only the {what} owner can do this")


async def _load_user(db: DbClient, user_id: str) -> User:
    user = await db.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


async def _load_service(db: DbClient, service_id: str):
    service = await db.get_service(service_id)
    if service is None:
        raise HTTPException(status_code=404, detail="Service not found")
    return service


async def _load_job(db: DbClient, job_id: str):
    job = await db.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


# -------------------------- auth --------------------------
@router.post("/auth/register", response_model=UserResponse, status_code=201)
async def register(payload: RegisterRequest, db: DbClient = Depends(get_db_client)):
    if await db.get_user_by_username(payload.username):
        raise HTTPException(status_code=409, detail="Username already taken")
    if await db.get_user_by_email(payload.email):
        raise HTTPException(status_code=409, detail="Email already registered")
    values = payload.model_dump()
    values["password"] = hash_password(payload.password)
    user = await db.create_user(values)
    logger.info("Registered user %s", user.id)
    return user.as_dict()


@router.post("/auth/login", response_model=UserResponse)
async def login(payload: LoginRequest, db: DbClient = Depends(get_db_client)):
    user = await db.get_user_by_username(payload.username)
    if user is None or not verify_password(user.password, payload.password):
        raise HTTPException(status_code=401, detail="Invalid username or password")
    return user.as_dict()


# -------------------------- users --------------------------
@router.get("/users/{user_id}", response_model=UserResponse)
async def get_user(user_id: str, db: DbClient = Depends(get_db_client)):
    user = await _load_user(db, user_id)
    return user.as_dict()


@router.put("/users/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    payload: UserUpdateRequest,
    current: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    await _require_self(db, current, user_id)
    user = await db.update_user(current.id, payload.model_dump(exclude_unset=True))
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user.as_dict()


@router.post("/users/{user_id}/avatar", response_model=UserResponse)
async def upload_avatar(
    user_id: str,
    file: UploadFile = File(...),
    current: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    uploads: UploadClient = Depends(get_upload_client),
):
    await _require_self(db, current, user_id)
    if not (file.content_type or "").startswith("image/"):
        raise HTTPException(status_code=400, detail="Image file required")
    url = uploads.save(await file.read(), file.filename or "avatar", folder="avatars")
    user = await db.update_user(current.id, {"profile_picture": url})
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user.as_dict()


# -------------------------- services --------------------------
@router.get("/services", response_model=list[ServiceResponse])
async def list_services(
    category: str | None = Query(None),
    status: ServiceStatus | None = Query(None),
    user_id: str | None = Query(None),
    db: DbClient = Depends(get_db_client),
):
    filters = {
        key: value
        for key, value in (
            ("category", category),
            ("status", status.value if status else None),
            ("user_id", user_id),
        )
        if value is not None
    }
    services = await db.get_services(filters)
    return [service.as_dict() for service in services]


@router.get("/services/{service_id}", response_model=ServiceResponse)
async def get_service(service_id: str, db: DbClient = Depends(get_db_client)):
    service = await _load_service(db, service_id)
    return service.as_dict()


@router.post("/services", response_model=ServiceResponse, status_code=201)
async def create_service(
    payload: ServiceCreateRequest,
    current: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    service = await db.create_service(current.id, payload.model_dump())
    return service.as_dict()


@router.put("/services/{service_id}", response_model=ServiceResponse)
async def update_service(
    service_id: str,
    payload: ServiceUpdateRequest,
    current: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    service = await _load_service(db, service_id)
    _require_owner(current, service.user_id, "service")
    updated = await db.update_service(service.id, payload.model_dump(exclude_unset=True))
    if updated is None:
        raise HTTPException(status_code=404, detail="Service not found")
    return updated.as_dict()


@router.get("/users/{user_id}/services", response_model=list[ServiceResponse])
async def list_user_services(user_id: str, db: DbClient = Depends(get_db_client)):
    user = await _load_user(db, user_id)
    services = await db.get_user_services(user.id)
    return [service.as_dict() for service in services]


# -------------------------- jobs --------------------------
@router.get("/jobs", response_model=list[JobResponse])
async def list_jobs(
    category: str | None = Query(None),
    job_type: str | None = Query(None),
    status: JobStatus | None = Query(None),
    user_id: str | None = Query(None),
    db: DbClient = Depends(get_db_client),
):
    filters = {
        key: value
        for key, value in (
            ("category", category),
            ("job_type", job_type),
            ("status", status.value if status else None),
            ("user_id", user_id),
        )
        if value is not None
    }
    jobs = await db.get_jobs(filters)
    return [job.as_dict() for job in jobs]


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, db: DbClient = Depends(get_db_client)):
    job = await _load_job(db, job_id)
    return job.as_dict()


@router.post("/jobs", response_model=JobResponse, status_code=201)
async def create_job(
    payload: JobCreateRequest,
    current: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    job = await db.create_job(current.id, payload.model_dump())
    return job.as_dict()


@router.put("/jobs/{job_id}", response_model=JobResponse)
async def update_job(
    job_id: str,
    payload: JobUpdateRequest,
    current: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    job = await _load_job(db, job_id)
    _require_owner(current, job.user_id, "job")
    updated = await db.update_job(job.id, payload.model_dump(exclude_unset=True))
    if updated is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return updated.as_dict()


@router.get("/users/{user_id}/jobs", response_model=list[JobResponse])
async def list_user_jobs(user_id: str, db: DbClient = Depends(get_db_client)):
    user = await _load_user(db, user_id)
    jobs = await db.get_user_jobs(user.id)
    return [job.as_dict() for job in jobs]


# -------------------------- applications --------------------------
@router.get("/jobs/{job_id}/applications", response_model=list[ApplicationResponse])
async def list_job_applications(
    job_id: str,
    current: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    job = await _load_job(db, job_id)
    _require_owner(current, job.user_id, "job")
    applications = await db.get_applications_for_job(job.id)
    return [application.as_dict() for application in applications]


@router.post(
    "/jobs/{job_id}/applications", response_model=ApplicationResponse, status_code=201
)
async def apply_to_job(
    job_id: str,
    description: str = Form(..., min_length=1),
    resume: UploadFile | None = File(None),
    current: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    uploads: UploadClient = Depends(get_upload_client),
):
    job = await _load_job(db, job_id)
    if _same_id(job.user_id, current.id):
        raise HTTPException(status_code=400, detail="You cannot apply to your own job")
    if job.status != JobStatus.OPEN.value:
        raise HTTPException(status_code=400, detail="Job is not open for applications")
    existing = await db.get_applications_for_job(job.id)
    if any(_same_id(application.user_id, current.id) for application in existing):
        raise HTTPException(status_code=409, detail="You have already applied to this job")

    resume_url = None
    if resume is not None and resume.filename:
        resume_url = uploads.save(await resume.read(), resume.filename, folder="resumes")

    application = await db.create_application(
        current.id,
        {"job_id": job.id, "description": description, "resume_file": resume_url},
    )
    return application.as_dict()


@router.get("/applications/{application_id}", response_model=ApplicationResponse)
async def get_application(
    application_id: str,
    current: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    application = await db.get_application(application_id)
    if application is None:
        raise HTTPException(status_code=404, detail="Application not found")
    if not _same_id(application.user_id, current.id):
        job = await db.get_job(application.job_id)
        if job is None or not _same_id(job.user_id, current.id):
            raise HTTPException(status_code=403, detail="Not allowed to view this application")
    return application.as_dict()


@router.put("/applications/{application_id}/status", response_model=ApplicationResponse)
async def update_application_status(
    application_id: str,
    payload: ApplicationStatusRequest,
    current: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    application = await db.get_application(application_id)
    if application is None:
        raise HTTPException(status_code=404, detail="Application not found")
    job = await _load_job(db, application.job_id)
    _require_owner(current, job.user_id, "job")
    updated = await db.update_application_status(application.id, payload.status.value)
    if updated is None:
        raise HTTPException(status_code=404, detail="Application not found")
    return updated.as_dict()


@router.get("/users/{user_id}/applications", response_model=list[ApplicationResponse])
async def list_user_applications(
    user_id: str,
    current: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    await _require_self(db, current, user_id)
    applications = await db.get_user_applications(current.id)
    return [application.as_dict() for application in applications]


# -------------------------- orders --------------------------
@router.post("/services/{service_id}/orders", response_model=OrderResponse, status_code=201)
async def create_order(
    service_id: str,
    payload: OrderCreateRequest,
    current: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    service = await _load_service(db, service_id)
    if _same_id(service.user_id, current.id):
        raise HTTPException(status_code=400, detail="You cannot order your own service")
    if service.status != ServiceStatus.ACTIVE.value:
        raise HTTPException(status_code=400, detail="Service is not available")
    order = await db.create_order(
        current.id,
        {
            "service_id": service.id,
            "seller_id": service.user_id,
            "payment_method": payload.payment_method.value,
            "total_price": payload.total_price or service.price,
        },
    )
    logger.info("Order %s placed for service %s", order.id, service.id)
    return order.as_dict()


@router.get("/users/{user_id}/orders", response_model=list[OrderResponse])
async def list_user_orders(
    user_id: str,
    current: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    await _require_self(db, current, user_id)
    orders = await db.get_user_orders(current.id)
    return [order.as_dict() for order in orders]


@router.get("/services/{service_id}/orders", response_model=list[OrderResponse])
async def list_service_orders(
    service_id: str,
    current: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    service = await _load_service(db, service_id)
    _require_owner(current, service.user_id, "service")
    orders = await db.get_orders_for_service(service.id)
    return [order.as_dict() for order in orders]


# -------------------------- reviews --------------------------
@router.get("/services/{service_id}/reviews", response_model=list[ReviewResponse])
async def list_service_reviews(service_id: str, db: DbClient = Depends(get_db_client)):
    service = await _load_service(db, service_id)
    reviews = await db.get_reviews_for_service(service.id)
    return [review.as_dict() for review in reviews]


@router.post("/services/{service_id}/reviews", response_model=ReviewResponse, status_code=201)
async def create_review(
    service_id: str,
    payload: ReviewCreateRequest,
    current: User = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    service = await _load_service(db, service_id)
    if _same_id(service.user_id, current.id):
        raise HTTPException(status_code=400, detail="You cannot review your own service")
    review = await db.create_review(
        current.id,
        {"service_id": service.id, "rating": payload.rating, "comment": payload.comment},
    )
    return review.as_dict()


# -------------------------- system --------------------------
@router.get("/system/info", response_model=SystemInfoResponse)
async def system_info(selector: BackendSelector = Depends(get_selector)):
    client = await selector.get_client()
    return SystemInfoResponse(storage=selector.kind, backend=client.kind)
