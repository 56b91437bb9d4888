import asyncio
import unittest

from workhub.config import Settings
from workhub.db import InMemoryDbClient
from workhub.dependencies import BackendSelector
from workhub.mongo_db import MongoConnection, MongoDbClient
from workhub.sql_db import SqlDbClient


def _settings(**overrides):
    return Settings(_env_file=None, **overrides)


class StubServer:
    connection_string = "mongodb://127.0.0.1:27999"

    def start(self):
        pass

    def stop(self):
        pass


class BackendSelectorTests(unittest.IsolatedAsyncioTestCase):
    async def test_memory_flag_wins_over_everything(self):
        selector = BackendSelector(
            _settings(use_memory_db=True, use_mongodb=True, database_url="sqlite+aiosqlite://")
        )
        client = await selector.get_client()
        self.assertIsInstance(client, InMemoryDbClient)
        self.assertEqual(selector.kind, "In-Memory Storage")

    async def test_defaults_to_memory_without_configuration(self):
        selector = BackendSelector(_settings())
        client = await selector.get_client()
        self.assertIsInstance(client, InMemoryDbClient)
        self.assertEqual(selector.kind, "In-Memory Storage (default)")

    async def test_client_is_memoized(self):
        selector = BackendSelector(_settings())
        first = await selector.get_client()
        self.assertIs(await selector.get_client(), first)
        self.assertIs(selector.client, first)

    async def test_embedded_mongo_failure_falls_back_to_memory(self):
        def failing_server():
            raise RuntimeError("mongod failed to start")

        settings = _settings(use_mongodb=True, use_mongodb_memory_server=True)
        selector = BackendSelector(
            settings,
            mongo_connection=MongoConnection(settings, server_factory=failing_server),
        )

        client = await selector.get_client()

        self.assertIsInstance(client, InMemoryDbClient)
        self.assertEqual(selector.kind, "In-Memory Storage (MongoDB fallback)")
        user = await client.create_user(
            {
                "username": "alice",
                "email": "alice@x.com",
                "password": "hashed",
                "full_name": "Alice",
            }
        )
        self.assertEqual(user.id, 1)

    async def test_embedded_mongo_selected_when_server_starts(self):
        settings = _settings(use_mongodb=True, use_mongodb_memory_server=True)
        selector = BackendSelector(
            settings,
            mongo_connection=MongoConnection(settings, server_factory=StubServer),
        )

        client = await selector.get_client()

        self.assertIsInstance(client, MongoDbClient)
        self.assertEqual(selector.kind, "MongoDB Memory Server")

    async def test_sql_backend_selected_when_configured(self):
        selector = BackendSelector(
            _settings(use_postgres=True, database_url="sqlite+aiosqlite:///:memory:")
        )
        client = await selector.get_client()
        self.assertIsInstance(client, SqlDbClient)
        self.assertEqual(selector.kind, "SQL (sqlite)")
        await selector.close()

    async def test_unreachable_sql_falls_back_to_memory(self):
        selector = BackendSelector(
            _settings(
                use_postgres=True,
                database_url="sqlite+aiosqlite:////nonexistent-dir/workhub.db",
            )
        )
        client = await selector.get_client()
        self.assertIsInstance(client, InMemoryDbClient)
        self.assertEqual(selector.kind, "In-Memory Storage (PostgreSQL fallback)")

    async def test_database_url_alone_does_not_select_sql(self):
        selector = BackendSelector(_settings(database_url="sqlite+aiosqlite:///:memory:"))
        self.assertIsInstance(await selector.get_client(), InMemoryDbClient)

    async def test_concurrent_first_use_builds_one_backend(self):
        selector = BackendSelector(_settings())
        calls = []

        async def slow_select():
            calls.append(1)
            await asyncio.sleep(0.01)
            return InMemoryDbClient()

        selector._select = slow_select
        clients = await asyncio.gather(*(selector.get_client() for _ in range(5)))

        self.assertEqual(len(calls), 1)
        self.assertTrue(all(client is clients[0] for client in clients))

    async def test_failed_construction_reaches_waiters_and_can_retry(self):
        selector = BackendSelector(_settings())
        attempts = []

        async def flaky_select():
            attempts.append(1)
            await asyncio.sleep(0.01)
            if len(attempts) == 1:
                raise RuntimeError("boom")
            return InMemoryDbClient()

        selector._select = flaky_select
        results = await asyncio.gather(
            selector.get_client(), selector.get_client(), return_exceptions=True
        )
        self.assertTrue(all(isinstance(r, RuntimeError) for r in results))

        self.assertIsInstance(await selector.get_client(), InMemoryDbClient)
        self.assertEqual(len(attempts), 2)


if __name__ == "__main__":
    unittest.main()
