import unittest

from harvey.backends.sqlite import SQLiteStore
from harvey.cache import CacheStore
from harvey.models import EmergencyInfo, PersistenceError, ReviewStatus
from harvey.persistence import CONSULTATIONS, PROFILES, select_one
from harvey.services import ProfileService


class TestSQLiteStore(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.store = SQLiteStore(":memory:")

    def tearDown(self) -> None:
        self.store.close()

    async def test_insert_assigns_id_and_created_at(self) -> None:
        row = await self.store.insert(CONSULTATIONS, {"patient_id": "p1", "title": "Visit"})
        self.assertTrue(row["id"])
        self.assertTrue(row["created_at"])

    async def test_update_sets_updated_at_and_adapts_enums(self) -> None:
        row = await self.store.insert(CONSULTATIONS, {"patient_id": "p1"})
        updated = await self.store.update(
            CONSULTATIONS, row["id"], {"review_status": ReviewStatus.PENDING_REVIEW}
        )
        self.assertEqual(updated["review_status"], "pending_review")
        self.assertIsNotNone(updated["updated_at"])

    async def test_update_missing_row_returns_none(self) -> None:
        self.assertIsNone(await self.store.update(CONSULTATIONS, "missing", {"title": "x"}))

    async def test_select_any_of_and_none_filters(self) -> None:
        await self.store.insert(CONSULTATIONS, {"patient_id": "p1", "doctor_id": None})
        await self.store.insert(CONSULTATIONS, {"patient_id": "p2", "doctor_id": "p1"})
        await self.store.insert(CONSULTATIONS, {"patient_id": "p3", "doctor_id": "d9"})

        mine = await self.store.select(CONSULTATIONS, any_of={"patient_id": "p1", "doctor_id": "p1"})
        unassigned = await self.store.select(CONSULTATIONS, where={"doctor_id": None})

        self.assertEqual(len(mine), 2)
        self.assertEqual([row["patient_id"] for row in unassigned], ["p1"])

    async def test_unknown_column_and_table_raise(self) -> None:
        with self.assertRaises(PersistenceError):
            await self.store.select(CONSULTATIONS, where={"bogus": 1})
        with self.assertRaises(PersistenceError):
            await self.store.count("bogus")

    async def test_unfiltered_delete_is_refused(self) -> None:
        await self.store.insert(CONSULTATIONS, {"patient_id": "p1"})
        with self.assertRaises(PersistenceError):
            await self.store.delete(CONSULTATIONS, where={})
        self.assertEqual(await self.store.count(CONSULTATIONS), 1)

    async def test_share_hash_is_unique(self) -> None:
        await self.store.insert(CONSULTATIONS, {"patient_id": "p1", "share_hash": "abc"})
        with self.assertRaises(PersistenceError):
            await self.store.insert(CONSULTATIONS, {"patient_id": "p2", "share_hash": "abc"})

    async def test_emergency_info_round_trips_through_profile(self) -> None:
        profiles = ProfileService(self.store, CacheStore())
        await profiles.create("pat-1", full_name="Sam Rivera")
        await profiles.update_emergency_info(
            "pat-1", {"blood_type": "O+", "allergies": ["penicillin"]}
        )
        profile = await profiles.get("pat-1")
        self.assertIsInstance(profile.emergency_info, EmergencyInfo)
        self.assertEqual(profile.emergency_info.allergies, ["penicillin"])
        row = await select_one(self.store, PROFILES, id="pat-1")
        self.assertIn('"schema_version":1', row["emergency_info"])


class TestProfileService(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.store = SQLiteStore(":memory:")
        self.profiles = ProfileService(self.store, CacheStore())

    def tearDown(self) -> None:
        self.store.close()

    async def test_update_refreshes_cached_profile(self) -> None:
        await self.profiles.create("u1", full_name="Old Name")
        self.assertEqual((await self.profiles.get("u1")).full_name, "Old Name")
        await self.profiles.set_avatar("u1", "https://cdn.example/u1.png")
        await self.profiles.update("u1", full_name="New Name", is_admin=True)

        profile = await self.profiles.get("u1")
        self.assertEqual(profile.full_name, "New Name")
        self.assertEqual(profile.avatar_url, "https://cdn.example/u1.png")
        self.assertTrue(await self.profiles.is_admin("u1"))
        self.assertFalse(await self.profiles.is_doctor("u1"))

    async def test_unknown_profile(self) -> None:
        self.assertIsNone(await self.profiles.get("ghost"))
        self.assertFalse(await self.profiles.is_admin("ghost"))
        with self.assertLogs("harvey.services.profiles", level="WARNING"):
            self.assertIsNone(await self.profiles.update("ghost", full_name="x"))


if __name__ == "__main__":
    unittest.main()
