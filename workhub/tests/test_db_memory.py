import unittest

from workhub.db import InMemoryDbClient
from workhub.tests.contract import StorageContract


class InMemoryDbClientTests(StorageContract, unittest.IsolatedAsyncioTestCase):
    async def make_db(self):
        return InMemoryDbClient()

    async def test_ids_are_sequential_per_table(self):
        alice = await self._user()
        bob = await self._user("bob")
        service = await self._service(alice)
        self.assertEqual((alice.id, bob.id), (1, 2))
        self.assertEqual(service.id, 1)

    async def test_opaque_key_never_resolves(self):
        await self._user()
        self.assertIsNone(await self.db.get_user("507f1f77bcf86cd799439011"))
        self.assertIsNone(await self.db.get_user(" 1x"))

    async def test_reset_clears_data_and_restarts_ids(self):
        await self._user()
        self.db.reset()
        self.assertEqual(self.db.users, {})
        user = await self._user("dave")
        self.assertEqual(user.id, 1)


if __name__ == "__main__":
    unittest.main()
