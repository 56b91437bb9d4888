import unittest

from mongomock_motor import AsyncMongoMockClient

from workhub.entities import Service, User
from workhub.errors import InvalidValueError
from workhub.mongo_db import MongoDbClient
from workhub.tests.contract import StorageContract


class MongoDbClientTests(StorageContract, unittest.IsolatedAsyncioTestCase):
    """
    Runs the document-store client against mongomock-motor instead of a live mongod.
    """

    async def make_db(self):
        self.database = AsyncMongoMockClient()["workhub_test"]
        return MongoDbClient(database=self.database)

    async def test_document_resolves_by_native_key_and_shadow_id(self):
        user = await self._user()
        document = await self.database.users.find_one({"username": "alice"})

        by_native = await self.db.get_user(document["_id"])
        by_native_text = await self.db.get_user(str(document["_id"]))
        by_shadow = await self.db.get_user(user.id)
        by_shadow_text = await self.db.get_user(str(user.id))

        self.assertEqual(by_native.username, "alice")
        self.assertEqual(by_native_text.id, user.id)
        self.assertEqual(by_shadow.id, user.id)
        self.assertEqual(by_shadow_text.id, user.id)

    async def test_update_by_native_key(self):
        user = await self._user()
        document = await self.database.users.find_one({"username": "alice"})
        updated = await self.db.update_user(str(document["_id"]), {"bio": "Illustrator"})
        self.assertEqual(updated.bio, "Illustrator")
        self.assertEqual(updated.id, user.id)

    async def test_unknown_native_key_returns_none(self):
        await self._user()
        self.assertIsNone(await self.db.get_user("507f1f77bcf86cd799439011"))

    async def test_new_documents_get_sequential_shadow_ids(self):
        alice = await self._user()
        bob = await self._user("bob")
        self.assertEqual((alice.id, bob.id), (1, 2))

    async def test_imported_records_keep_their_numeric_ids(self):
        imported = User(
            id=41,
            username="legacy",
            email="legacy@x.com",
            password="hashed",
            full_name="Legacy User",
        )
        count = await self.db.import_records(User, [imported])
        self.assertEqual(count, 1)

        fetched = await self.db.get_user("41")
        self.assertEqual(fetched.username, "legacy")
        self.assertEqual(fetched.password, "hashed")

        fresh = await self._user()
        self.assertEqual(fresh.id, 42)

    async def test_import_of_dicts_and_empty_batches(self):
        self.assertEqual(await self.db.import_records(Service, []), 0)
        await self.db.import_records(
            Service,
            [
                {
                    "id": "7",
                    "user_id": 41,
                    "title": "Migrated",
                    "description": "From SQL",
                    "price": 10,
                    "category": "Design",
                    "status": "active",
                }
            ],
        )
        service = await self.db.get_service(7)
        self.assertEqual(service.title, "Migrated")
        self.assertEqual([s.id for s in await self.db.get_user_services("41")], [7])

    async def test_import_without_id_is_rejected(self):
        with self.assertRaises(ValueError):
            await self.db.import_records(Service, [{"title": "No id"}])

    async def test_import_validates_fields_and_enums(self):
        base = {
            "id": 8,
            "user_id": 41,
            "title": "Migrated",
            "description": "From SQL",
            "price": 10,
            "category": "Design",
        }
        with self.assertRaises(InvalidValueError):
            await self.db.import_records(Service, [{**base, "status": "archived"}])
        with self.assertRaises(InvalidValueError):
            await self.db.import_records(Service, [{**base, "rank": 1}])
        with self.assertRaises(InvalidValueError):
            await self.db.import_records(Service, [{**base, "id": "1" * 25}])
        self.assertEqual(await self.database.services.count_documents({}), 0)

        await self.db.import_records(Service, [{**base, "user_id": "41", "status": "active"}])
        self.assertEqual([s.id for s in await self.db.get_user_services(41)], [8])

    async def test_init_schema_creates_missing_collections(self):
        await self.database.create_collection("users")
        created = await self.db.init_schema()
        self.assertNotIn("users", created)
        self.assertIn("reviews", created)
        self.assertEqual(await self.db.init_schema(), [])

    def test_requires_connection_or_database(self):
        with self.assertRaises(ValueError):
            MongoDbClient()


if __name__ == "__main__":
    unittest.main()
