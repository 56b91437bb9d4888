"""
Behaviour every storage backend must share.

Concrete test cases mix ``StorageContract`` into
``unittest.IsolatedAsyncioTestCase`` and implement ``make_db``.
"""

from workhub.errors import DuplicateKeyError, InvalidValueError


class StorageContract:
    async def make_db(self):
        raise NotImplementedError

    async def asyncSetUp(self):
        self.db = await self.make_db()

    async def _user(self, username="alice", role="freelancer", **extra):
        return await self.db.create_user(
            {
                "username": username,
                "email": f"{username}@x.com",
                "password": "hashed-secret",
                "full_name": username.title(),
                "role": role,
                **extra,
            }
        )

    async def _service(self, owner, **extra):
        values = {
            "title": "Logo design",
            "description": "A clean vector logo",
            "price": 50,
            "category": "Design",
        }
        values.update(extra)
        return await self.db.create_service(owner.id, values)

    async def _job(self, owner, **extra):
        values = {
            "title": "Build a landing page",
            "description": "Single page, responsive",
            "budget": 1000,
            "category": "Web",
            "job_type": "fixed",
        }
        values.update(extra)
        return await self.db.create_job(owner.id, values)

    # -------------------------- users --------------------------
    async def test_create_user_assigns_id_and_defaults(self):
        user = await self.db.create_user(
            {
                "username": "carol",
                "email": "carol@x.com",
                "password": "hashed",
                "full_name": "Carol",
            }
        )
        self.assertIsNotNone(user.id)
        self.assertIsNotNone(user.created_at)
        self.assertEqual(user.role, "freelancer")
        self.assertIsNone(user.bio)
        self.assertIsNone(user.profile_picture)

    async def test_user_resolves_by_number_and_numeric_string(self):
        user = await self._user()
        by_id = await self.db.get_user(user.id)
        by_text = await self.db.get_user(str(user.id))
        self.assertEqual(by_id.username, "alice")
        self.assertEqual(by_text.id, by_id.id)

    async def test_unaddressable_ids_return_none(self):
        await self._user()
        self.assertIsNone(await self.db.get_user("not-an-id"))
        self.assertIsNone(await self.db.get_user(987654))
        self.assertIsNone(await self.db.get_service("12abc"))
        self.assertEqual(await self.db.get_applications_for_job("nope"), [])

    async def test_lookup_by_username_and_email(self):
        user = await self._user()
        self.assertEqual((await self.db.get_user_by_username("alice")).id, user.id)
        self.assertEqual((await self.db.get_user_by_email("alice@x.com")).id, user.id)
        self.assertIsNone(await self.db.get_user_by_username("nobody"))

    async def test_duplicate_username_is_rejected(self):
        await self._user()
        with self.assertRaises(DuplicateKeyError):
            await self.db.create_user(
                {
                    "username": "alice",
                    "email": "other@x.com",
                    "password": "x",
                    "full_name": "Other",
                }
            )
        self.assertEqual((await self.db.get_user_by_username("alice")).email, "alice@x.com")

    async def test_duplicate_email_is_rejected(self):
        await self._user()
        with self.assertRaises(DuplicateKeyError):
            await self.db.create_user(
                {
                    "username": "alice2",
                    "email": "alice@x.com",
                    "password": "x",
                    "full_name": "Other",
                }
            )

    async def test_update_user_changes_only_given_fields(self):
        user = await self._user(bio="Designer")
        updated = await self.db.update_user(user.id, {"full_name": "Alice Liddell"})
        self.assertEqual(updated.full_name, "Alice Liddell")
        self.assertEqual(updated.bio, "Designer")
        self.assertEqual(updated.email, "alice@x.com")
        self.assertEqual(updated.password, "hashed-secret")

        fetched = await self.db.get_user(user.id)
        self.assertEqual(fetched.full_name, "Alice Liddell")

    async def test_update_user_to_taken_email_is_rejected(self):
        await self._user()
        bob = await self._user("bob")
        with self.assertRaises(DuplicateKeyError):
            await self.db.update_user(bob.id, {"email": "alice@x.com"})

    async def test_update_missing_record_returns_none(self):
        self.assertIsNone(await self.db.update_user(424242, {"bio": "x"}))
        self.assertIsNone(await self.db.update_service("missing", {"price": 10}))

    async def test_update_missing_user_with_taken_email_returns_none(self):
        await self._user()
        self.assertIsNone(await self.db.update_user(999, {"email": "alice@x.com"}))

    async def test_oversized_numeric_ids_resolve_to_nothing(self):
        alice = await self._user()
        await self._service(alice)
        huge = "1" * 25
        self.assertIsNone(await self.db.get_user(huge))
        self.assertIsNone(await self.db.update_service(huge, {"price": 10}))
        self.assertIsNone(await self.db.update_user(str(2**63), {"bio": "x"}))
        self.assertEqual(await self.db.get_services({"user_id": huge}), [])

    async def test_update_with_unknown_field_is_rejected(self):
        user = await self._user()
        with self.assertRaises(InvalidValueError):
            await self.db.update_user(user.id, {"nickname": "al"})

    async def test_password_is_not_serialized_by_default(self):
        user = await self._user()
        self.assertNotIn("password", user.as_dict())
        self.assertEqual(user.as_dict(include_password=True)["password"], "hashed-secret")

    # -------------------------- services --------------------------
    async def test_create_service_and_filter_by_category(self):
        alice = await self._user()
        await self._service(alice)

        services = await self.db.get_services({"category": "Design"})

        self.assertEqual(len(services), 1)
        self.assertEqual(services[0].title, "Logo design")
        self.assertEqual(services[0].price, 50)
        self.assertEqual(services[0].status, "active")

    async def test_filters_are_a_conjunction(self):
        alice = await self._user()
        await self._service(alice, title="A")
        await self._service(alice, title="B", status="inactive")
        await self._service(alice, title="C", category="Writing")

        matching = await self.db.get_services({"category": "Design", "status": "active"})
        self.assertEqual([s.title for s in matching], ["A"])
        self.assertEqual(len(await self.db.get_services()), 3)
        self.assertEqual(len(await self.db.get_services({})), 3)

    async def test_filter_with_unknown_field_is_rejected(self):
        with self.assertRaises(InvalidValueError):
            await self.db.get_services({"colour": "blue"})

    async def test_filter_by_owner_accepts_numeric_string(self):
        alice = await self._user()
        bob = await self._user("bob")
        await self._service(alice)
        await self._service(bob, title="Bob's")

        services = await self.db.get_services({"user_id": str(alice.id)})
        self.assertEqual([s.title for s in services], ["Logo design"])
        self.assertEqual(len(await self.db.get_user_services(bob.id)), 1)

    async def test_update_service_changes_only_given_fields(self):
        alice = await self._user()
        service = await self._service(alice, delivery_time="3 days")
        updated = await self.db.update_service(service.id, {"price": 75})
        self.assertEqual(updated.price, 75)
        self.assertEqual(updated.title, "Logo design")
        self.assertEqual(updated.delivery_time, "3 days")

    async def test_invalid_service_status_is_rejected(self):
        alice = await self._user()
        with self.assertRaises(InvalidValueError):
            await self._service(alice, status="archived")

    # -------------------------- jobs and applications --------------------------
    async def test_application_approval_flow(self):
        bob = await self._user("bob", role="employer")
        alice = await self._user()
        job = await self._job(bob)
        self.assertEqual(job.status, "open")

        application = await self.db.create_application(
            alice.id, {"job_id": job.id, "description": "I can do it"}
        )
        self.assertEqual(application.status, "pending")

        updated = await self.db.update_application_status(application.id, "approved")
        self.assertEqual(updated.status, "approved")

        applications = await self.db.get_applications_for_job(job.id)
        self.assertEqual(len(applications), 1)
        self.assertEqual(applications[0].status, "approved")

    async def test_get_application_by_id(self):
        bob = await self._user("bob", role="employer")
        alice = await self._user()
        job = await self._job(bob)
        application = await self.db.create_application(
            alice.id, {"job_id": job.id, "description": "Hire me"}
        )

        fetched = await self.db.get_application(str(application.id))
        self.assertEqual(fetched.description, "Hire me")
        self.assertEqual(len(await self.db.get_user_applications(alice.id)), 1)
        self.assertEqual(await self.db.get_user_applications(bob.id), [])

    async def test_invalid_application_status_is_rejected(self):
        bob = await self._user("bob", role="employer")
        alice = await self._user()
        job = await self._job(bob)
        application = await self.db.create_application(
            alice.id, {"job_id": job.id, "description": "Hire me"}
        )
        with self.assertRaises(InvalidValueError):
            await self.db.update_application_status(application.id, "archived")

    async def test_update_job_and_list_user_jobs(self):
        bob = await self._user("bob", role="employer")
        job = await self._job(bob, location="Remote")
        updated = await self.db.update_job(job.id, {"status": "closed"})
        self.assertEqual(updated.status, "closed")
        self.assertEqual(updated.location, "Remote")

        self.assertEqual(len(await self.db.get_jobs({"status": "closed"})), 1)
        self.assertEqual(await self.db.get_jobs({"status": "open"}), [])
        self.assertEqual([j.id for j in await self.db.get_user_jobs(bob.id)], [job.id])

    # -------------------------- orders --------------------------
    async def test_order_is_visible_to_buyer_and_seller(self):
        alice = await self._user()
        bob = await self._user("bob")
        service = await self._service(alice)

        order = await self.db.create_order(
            bob.id,
            {
                "service_id": service.id,
                "seller_id": alice.id,
                "payment_method": "card",
                "total_price": 50,
            },
        )
        self.assertEqual(order.status, "pending")

        self.assertEqual([o.id for o in await self.db.get_user_orders(alice.id)], [order.id])
        self.assertEqual([o.id for o in await self.db.get_user_orders(bob.id)], [order.id])
        self.assertEqual(len(await self.db.get_orders_for_service(service.id)), 1)

    # -------------------------- reviews --------------------------
    async def test_one_review_per_user_and_service(self):
        alice = await self._user()
        bob = await self._user("bob")
        service = await self._service(alice)

        review = await self.db.create_review(
            bob.id, {"service_id": service.id, "rating": 5, "comment": "Great"}
        )
        self.assertEqual(review.rating, 5)

        with self.assertRaises(DuplicateKeyError):
            await self.db.create_review(bob.id, {"service_id": service.id, "rating": 1})

        reviews = await self.db.get_reviews_for_service(service.id)
        self.assertEqual(len(reviews), 1)
        self.assertEqual(reviews[0].comment, "Great")
