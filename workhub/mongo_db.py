"""
MongoDB-backed implementation of the storage port.

Documents are keyed by ObjectId and also carry a shadow numeric ``id`` so a
record stays addressable by the integer it had under another backend (and by
the integer every new document is assigned from the ``counters`` collection).
"""

from __future__ import annotations

import asyncio
import logging
import re
from contextlib import contextmanager
from typing import Any, Callable, Iterable, Iterator, Mapping, Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, TEXT, ReturnDocument
from pymongo import errors as mongo_errors

from workhub.config import Settings
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
    Job,
    Order,
    Review,
    Service,
    User,
    check_fields,
    coerce_enums,
    field_names,
    update_fields,
    utcnow,
)
from workhub.errors import BackendUnavailableError, DuplicateKeyError, InvalidValueError
from workhub.ids import DocumentKeyResolver, normalize_reference, parse_numeric_id

logger = logging.getLogger(__name__)

DEFAULT_MONGODB_URI = "mongodb://localhost:27017/workhub"
COUNTERS_COLLECTION = "counters"

COLLECTIONS: dict[type, str] = {
    User: "users",
    Service: "services",
    Job: "jobs",
    Application: "applications",
    Order: "orders",
    Review: "reviews",
}

INDEXES: dict[str, list[tuple[list[tuple[str, Any]], dict]]] = {
    "users": [
        ([("username", ASCENDING)], {"unique": True}),
        ([("email", ASCENDING)], {"unique": True}),
        ([("full_name", TEXT)], {}),
        ([("role", ASCENDING)], {}),
    ],
    "services": [
        ([("title", TEXT), ("description", TEXT)], {}),
        ([("category", ASCENDING)], {}),
        ([("status", ASCENDING)], {}),
        ([("user_id", ASCENDING)], {}),
    ],
    "jobs": [
        ([("title", TEXT), ("description", TEXT)], {}),
        ([("category", ASCENDING)], {}),
        ([("status", ASCENDING)], {}),
        ([("user_id", ASCENDING)], {}),
    ],
    "applications": [
        ([("job_id", ASCENDING)], {}),
        ([("user_id", ASCENDING)], {}),
    ],
    "orders": [
        ([("service_id", ASCENDING)], {}),
        ([("buyer_id", ASCENDING)], {}),
        ([("seller_id", ASCENDING)], {}),
    ],
    "reviews": [
        ([("service_id", ASCENDING)], {}),
        ([("user_id", ASCENDING), ("service_id", ASCENDING)], {"unique": True}),
    ],
}


def mask_uri(uri: str) -> str:
    return re.sub(r"//([^:/@]+):([^@]+)@", "//***:***@", uri)


def _embedded_server_factory():
    from pymongo_inmemory import Mongod

    return Mongod()


class MongoConnection:
    """
    Process-wide MongoDB connection, opened on first use and then reused.

    Only one connection attempt runs at a time: callers that arrive while it
    is in flight await the same future. When the embedded server is enabled
    the ``mongod`` it starts is kept for the life of the process.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        client_factory: Callable[..., Any] = AsyncIOMotorClient,
        server_factory: Callable[[], Any] = _embedded_server_factory,
    ):
        self.settings = settings
        self._client_factory = client_factory
        self._server_factory = server_factory
        self._client = None
        self._database = None
        self._server = None
        self._server_lock = asyncio.Lock()
        self._connecting = False
        self._pending: Optional[asyncio.Future] = None
        self.uri: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self._database is not None

    async def prepare(self) -> None:
        """Start the embedded server if one is configured; does not connect."""
        if self.settings.use_mongodb_memory_server:
            await self.ensure_embedded_server()

    async def ensure_embedded_server(self) -> str:
        async with self._server_lock:
            if self._server is not None:
                logger.info("Reusing embedded MongoDB server")
                return self._server.connection_string
            try:
                server = self._server_factory()
                await asyncio.to_thread(server.start)
            except Exception as exc:
                logger.error("Error starting embedded MongoDB server: %s", exc)
                raise BackendUnavailableError(
                    f"Embedded MongoDB server failed to start: {exc}"
                ) from exc
            self._server = server
            logger.info(
                "Started embedded MongoDB server at %s", server.connection_string
            )
            return server.connection_string

    async def get_database(self):
        if self._database is not None:
            return self._database

        if self._connecting and self._pending is not None:
            logger.info("MongoDB connection in progress, waiting for it to complete")
            return await self._pending

        self._connecting = True
        pending = asyncio.get_running_loop().create_future()
        self._pending = pending
        try:
            database = await self._connect()
        except Exception as exc:
            pending.set_exception(exc)
            # Mark retrieved; waiters (if any) still receive it.
            pending.exception()
            raise
        else:
            self._database = database
            pending.set_result(database)
            return database
        finally:
            self._connecting = False
            self._pending = None
            if not pending.done():
                pending.cancel()

    async def _connect(self):
        if self.settings.use_mongodb_memory_server:
            uri = await self.ensure_embedded_server()
        else:
            uri = self.settings.mongodb_uri
            if not uri:
                uri = DEFAULT_MONGODB_URI
                logger.info("No MONGODB_URI provided, using default: %s", uri)

        logger.info("Connecting to MongoDB at %s", mask_uri(uri))
        try:
            client = self._client_factory(
                uri,
                serverSelectionTimeoutMS=self.settings.mongodb_server_selection_timeout_ms,
                tz_aware=True,
            )
            await client.admin.command("ping")
            database = client.get_default_database(
                default=self.settings.mongodb_database
            )
        except mongo_errors.PyMongoError as exc:
            logger.error("Error connecting to MongoDB: %s", exc)
            raise BackendUnavailableError(f"MongoDB connection failed: {exc}") from exc

        self._client = client
        self.uri = uri
        logger.info("Connected to MongoDB database %s", database.name)
        return database

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
        if self._server is not None:
            await asyncio.to_thread(self._server.stop)
        self._client = None
        self._database = None
        self._server = None


@contextmanager
def backend_errors(entity: str) -> Iterator[None]:
    """Translate driver exceptions into the storage error taxonomy."""
    try:
        yield
    except mongo_errors.DuplicateKeyError as exc:
        details = exc.details or {}
        fields = list((details.get("keyPattern") or {}).keys()) or ["key"]
        raise DuplicateKeyError(entity, fields) from exc
    except mongo_errors.ConnectionFailure as exc:
        raise BackendUnavailableError(f"MongoDB unavailable: {exc}") from exc


def _to_record(entity: type, document: Mapping[str, Any]):
    names = field_names(entity)
    data = {k: v for k, v in document.items() if k in names and k != "id"}
    shadow_id = document.get("id")
    data["id"] = shadow_id if shadow_id is not None else str(document["_id"])
    return entity(**data)


class MongoDbClient:
    """Storage port on MongoDB collections (one per record type)."""

    kind = "mongodb"

    def __init__(self, connection: Optional[MongoConnection] = None, *, database=None):
        if connection is None and database is None:
            raise ValueError("MongoDbClient needs a connection or a database")
        self.connection = connection
        self._database = database
        self.resolver = DocumentKeyResolver()
        self._indexes_ready = False
        self._index_lock = asyncio.Lock()

    async def _db(self):
        database = self._database
        if database is None:
            database = await self.connection.get_database()
        if not self._indexes_ready:
            await self._ensure_indexes(database)
        return database

    async def _ensure_indexes(self, database) -> None:
        async with self._index_lock:
            if self._indexes_ready:
                return
            with backend_errors("index"):
                for collection, indexes in INDEXES.items():
                    for keys, options in indexes:
                        await database[collection].create_index(keys, **options)
                    await database[collection].create_index(
                        [("id", ASCENDING)], unique=True, sparse=True
                    )
            self._indexes_ready = True

    async def init_schema(self) -> list[str]:
        """Create missing collections and indexes; returns the collections created."""
        database = self._database
        if database is None:
            database = await self.connection.get_database()
        created = []
        with backend_errors("schema"):
            existing = set(await database.list_collection_names())
            for name in COLLECTIONS.values():
                if name not in existing:
                    await database.create_collection(name)
                    created.append(name)
        await self._ensure_indexes(database)
        return created

    async def _collection(self, entity: type):
        database = await self._db()
        return database[COLLECTIONS[entity]]

    async def _next_sequence(self, name: str) -> int:
        database = await self._db()
        counter = await database[COUNTERS_COLLECTION].find_one_and_update(
            {"_id": name},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(counter["seq"])

    async def _find_one(self, entity: type, record_id: Any):
        collection = await self._collection(entity)
        for query in self.resolver.resolve(record_id):
            try:
                with backend_errors(entity.__name__):
                    document = await collection.find_one(query)
            except BackendUnavailableError:
                raise
            except mongo_errors.PyMongoError:
                logger.warning(
                    "Error looking up %s with %s", entity.__name__, query, exc_info=True
                )
                continue
            if document:
                return _to_record(entity, document)
        logger.debug("%s not found with id %r", entity.__name__, record_id)
        return None

    async def _find_by(self, entity: type, query: Mapping[str, Any]):
        collection = await self._collection(entity)
        try:
            with backend_errors(entity.__name__):
                document = await collection.find_one(dict(query))
        except BackendUnavailableError:
            raise
        except mongo_errors.PyMongoError:
            logger.warning("Error getting %s by %s", entity.__name__, query, exc_info=True)
            return None
        return _to_record(entity, document) if document else None

    async def _find_many(self, entity: type, query: Mapping[str, Any]) -> list:
        collection = await self._collection(entity)
        try:
            with backend_errors(entity.__name__):
                documents = await collection.find(
                    dict(query), sort=[("id", ASCENDING)]
                ).to_list(length=None)
        except BackendUnavailableError:
            raise
        except mongo_errors.PyMongoError:
            logger.warning(
                "Error listing %s with %s", entity.__name__, query, exc_info=True
            )
            return []
        return [_to_record(entity, document) for document in documents]

    async def _insert(self, entity: type, values: Mapping[str, Any]):
        collection = await self._collection(entity)
        with backend_errors(entity.__name__):
            shadow_id = await self._next_sequence(COLLECTIONS[entity])
            document = {**values, "id": shadow_id, "created_at": utcnow()}
            result = await collection.insert_one(document)
        document["_id"] = result.inserted_id
        return _to_record(entity, document)

    async def _update(self, entity: type, record_id: Any, values: Mapping[str, Any]):
        if not values:
            return await self._find_one(entity, record_id)
        collection = await self._collection(entity)
        for query in self.resolver.resolve(record_id):
            with backend_errors(entity.__name__):
                document = await collection.find_one_and_update(
                    query, {"$set": dict(values)}, return_document=ReturnDocument.AFTER
                )
            if document:
                return _to_record(entity, document)
            logger.debug("%s not found with %s to update", entity.__name__, query)
        logger.info("Could not find %s with id %r to update", entity.__name__, record_id)
        return None

    async def import_records(self, entity: type, records: Iterable[Any]) -> int:
        """
        Insert records that already carry a numeric id from another backend.

        The id is kept in the shadow field, and the collection's sequence is
        moved past the largest imported id so new documents do not collide.
        """
        documents = []
        for record in records:
            if isinstance(record, User):
                data = record.as_dict(include_password=True)
            elif isinstance(record, Mapping):
                data = dict(record)
            else:
                data = record.as_dict()
            record_id = parse_numeric_id(data.get("id"))
            if record_id is None:
                raise InvalidValueError(
                    f"{entity.__name__} record needs a numeric id to be imported, got {data.get('id')!r}"
                )
            check_fields(entity, data)
            data = coerce_enums(entity, data)
            for key in REFERENCE_FIELDS.intersection(data):
                data[key] = normalize_reference(data[key])
            data["id"] = record_id
            data.setdefault("created_at", utcnow())
            documents.append(data)
        if not documents:
            return 0
        collection = await self._collection(entity)
        database = await self._db()
        with backend_errors(entity.__name__):
            await collection.insert_many(documents)
            await database[COUNTERS_COLLECTION].update_one(
                {"_id": COLLECTIONS[entity]},
                {"$max": {"seq": max(d["id"] for d in documents)}},
                upsert=True,
            )
        logger.info("Imported %d %s records", len(documents), entity.__name__)
        return len(documents)

    # -------------------------- users --------------------------
    async def get_user(self, user_id: Any) -> Optional[User]:
        return await self._find_one(User, user_id)

    async def get_user_by_username(self, username: str) -> Optional[User]:
        return await self._find_by(User, {"username": username})

    async def get_user_by_email(self, email: str) -> Optional[User]:
        return await self._find_by(User, {"email": email})

    async def create_user(self, user: Mapping[str, Any]) -> User:
        return await self._insert(User, new_user_values(user))

    async def update_user(self, user_id: Any, data: Mapping[str, Any]) -> Optional[User]:
        return await self._update(User, user_id, update_fields(User, data))

    # -------------------------- services --------------------------
    async def get_service(self, service_id: Any) -> Optional[Service]:
        return await self._find_one(Service, service_id)

    async def get_services(self, filters: Optional[Mapping[str, Any]] = None) -> list[Service]:
        return await self._find_many(Service, normalize_filters(Service, filters))

    async def get_user_services(self, user_id: Any) -> list[Service]:
        return await self._find_many(Service, {"user_id": normalize_reference(user_id)})

    async def create_service(self, user_id: Any, service: Mapping[str, Any]) -> Service:
        return await self._insert(Service, new_service_values(user_id, service))

    async def update_service(self, service_id: Any, data: Mapping[str, Any]) -> Optional[Service]:
        return await self._update(Service, service_id, update_fields(Service, data))

    # -------------------------- jobs --------------------------
    async def get_job(self, job_id: Any) -> Optional[Job]:
        return await self._find_one(Job, job_id)

    async def get_jobs(self, filters: Optional[Mapping[str, Any]] = None) -> list[Job]:
        return await self._find_many(Job, normalize_filters(Job, filters))

    async def get_user_jobs(self, user_id: Any) -> list[Job]:
        return await self._find_many(Job, {"user_id": normalize_reference(user_id)})

    async def create_job(self, user_id: Any, job: Mapping[str, Any]) -> Job:
        return await self._insert(Job, new_job_values(user_id, job))

    async def update_job(self, job_id: Any, data: Mapping[str, Any]) -> Optional[Job]:
        return await self._update(Job, job_id, update_fields(Job, data))

    # -------------------------- applications --------------------------
    async def get_application(self, application_id: Any) -> Optional[Application]:
        return await self._find_one(Application, application_id)

    async def get_applications_for_job(self, job_id: Any) -> list[Application]:
        return await self._find_many(Application, {"job_id": normalize_reference(job_id)})

    async def get_user_applications(self, user_id: Any) -> list[Application]:
        return await self._find_many(Application, {"user_id": normalize_reference(user_id)})

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
        return await self._find_many(Order, {"service_id": normalize_reference(service_id)})

    async def get_user_orders(self, user_id: Any) -> list[Order]:
        key = normalize_reference(user_id)
        return await self._find_many(
            Order, {"$or": [{"buyer_id": key}, {"seller_id": key}]}
        )

    async def create_order(self, buyer_id: Any, order: Mapping[str, Any]) -> Order:
        return await self._insert(Order, new_order_values(buyer_id, order))

    # -------------------------- reviews --------------------------
    async def get_reviews_for_service(self, service_id: Any) -> list[Review]:
        return await self._find_many(Review, {"service_id": normalize_reference(service_id)})

    async def create_review(self, user_id: Any, review: Mapping[str, Any]) -> Review:
        return await self._insert(Review, new_review_values(user_id, review))
