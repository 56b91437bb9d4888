import unittest

from workhub.errors import BackendUnavailableError, InvalidValueError
from workhub.sql_db import SqlDbClient
from workhub.tests.contract import StorageContract


class SqlDbClientTests(StorageContract, unittest.IsolatedAsyncioTestCase):
    """
    Uses SQLite via an aiosqlite URL for fast/local testing of the relational client.
    """

    async def make_db(self):
        db = SqlDbClient("sqlite+aiosqlite:///:memory:")
        await db.init_schema()
        return db

    async def asyncTearDown(self):
        await self.db.dispose()

    async def test_opaque_key_never_resolves(self):
        await self._user()
        self.assertIsNone(await self.db.get_user("507f1f77bcf86cd799439011"))
        self.assertEqual(await self.db.get_user_orders("507f1f77bcf86cd799439011"), [])

    async def test_keys_wider_than_the_integer_column_resolve_to_nothing(self):
        alice = await self._user()
        self.assertIsNone(await self.db.get_user(2**31))
        self.assertIsNone(await self.db.update_user(str(2**31), {"bio": "x"}))
        self.assertEqual(await self.db.get_user_orders(2**31), [])
        self.assertEqual((await self.db.get_user(alice.id)).username, "alice")

    async def test_dangling_reference_is_rejected(self):
        alice = await self._user()
        with self.assertRaises(InvalidValueError):
            await self.db.create_review(alice.id, {"service_id": 999, "rating": 4})

    async def test_non_numeric_reference_is_rejected(self):
        alice = await self._user()
        with self.assertRaises(InvalidValueError):
            await self.db.create_application(
                alice.id, {"job_id": "not-a-job", "description": "x"}
            )

    def test_database_url_is_required(self):
        with self.assertRaises(ValueError):
            SqlDbClient("")


class UnreachableDatabaseTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.db = SqlDbClient("sqlite+aiosqlite:////nonexistent-workhub-dir/workhub.db")

    async def asyncTearDown(self):
        await self.db.dispose()

    async def test_single_record_lookup_raises(self):
        with self.assertRaises(BackendUnavailableError):
            await self.db.get_user(1)

    async def test_list_query_raises(self):
        with self.assertRaises(BackendUnavailableError):
            await self.db.get_services()


if __name__ == "__main__":
    unittest.main()
