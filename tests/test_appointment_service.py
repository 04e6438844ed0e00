import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from harvey import keys
from harvey.backends.sqlite import SQLiteStore
from harvey.cache import CacheStore
from harvey.models import AppointmentStatus, PersistenceError, SummaryType
from harvey.persistence import CONSULTATIONS
from harvey.services import AppointmentService, ConsultationService

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


class AppointmentServiceTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.store = SQLiteStore(":memory:")
        self.cache = CacheStore()
        self.consultations = ConsultationService(self.store, self.cache, clock=lambda: NOW)
        self.appointments = AppointmentService(
            self.store, self.cache, self.consultations, clock=lambda: NOW
        )

    def tearDown(self) -> None:
        self.store.close()

    async def _linked_pair(self):
        appointment = await self.appointments.create(
            patient_id="p1", doctor_id="d1", scheduled_for=NOW - timedelta(days=1), title="Visit"
        )
        consultation = await self.consultations.create(
            patient_id="p1", doctor_id="d1", title="Visit"
        )
        await self.consultations.create_transcription(consultation.id, "transcript")
        await self.consultations.create_summary(consultation.id, SummaryType.MEDICAL, "medical")
        await self.appointments.complete(appointment.id, consultation.id)
        return appointment, consultation

    async def _warm(self, appointment_id: str, consultation_id: str) -> None:
        await self.appointments.get(appointment_id)
        await self.appointments.list_for_user("p1")
        await self.appointments.list_past("p1")
        await self.consultations.get(consultation_id)
        await self.consultations.get_transcription(consultation_id)
        await self.consultations.get_summaries(consultation_id)
        await self.consultations.get_summary_by_type(consultation_id, SummaryType.MEDICAL)


class TestAppointmentViews(AppointmentServiceTestCase):
    async def test_upcoming_and_past_split_on_clock(self) -> None:
        future = await self.appointments.create(
            patient_id="p1", scheduled_for=NOW + timedelta(days=2), title="Follow-up"
        )
        past = await self.appointments.create(
            patient_id="p1", scheduled_for=NOW - timedelta(days=2), title="Intake"
        )

        upcoming = await self.appointments.list_upcoming("p1")
        history = await self.appointments.list_past("p1")

        self.assertEqual([a.id for a in upcoming], [future.id])
        self.assertEqual([a.id for a in history], [past.id])
        self.assertEqual(len(await self.appointments.list_for_user("p1")), 2)

    async def test_cancelled_future_appointment_leaves_upcoming(self) -> None:
        future = await self.appointments.create(
            patient_id="p1", scheduled_for=NOW + timedelta(days=2)
        )
        self.assertEqual(len(await self.appointments.list_upcoming("p1")), 1)

        self.assertTrue(await self.appointments.cancel(future.id))

        self.assertEqual(await self.appointments.list_upcoming("p1"), [])
        self.assertIs((await self.appointments.get(future.id)).status, AppointmentStatus.CANCELLED)

    async def test_update_invalidates_every_view_of_owner(self) -> None:
        created = await self.appointments.create(
            patient_id="p1", scheduled_for=NOW + timedelta(days=2), title="Old"
        )
        await self.appointments.list_for_user("p1")
        await self.appointments.list_upcoming("p1")
        await self.appointments.get(created.id)

        await self.appointments.update(created.id, title="New")

        self.assertNotIn(keys.user_appointments("p1", "all"), self.cache)
        self.assertNotIn(keys.user_appointments("p1", "upcoming"), self.cache)
        self.assertEqual((await self.appointments.get(created.id)).title, "New")


class TestAppointmentDelete(AppointmentServiceTestCase):
    async def test_delete_cascades_to_linked_consultation(self) -> None:
        appointment, consultation = await self._linked_pair()
        await self._warm(appointment.id, consultation.id)
        self.cache.set(keys.user_appointments("p10", "all"), ["other"], 60)

        self.assertTrue(await self.appointments.delete(appointment.id))

        cid = consultation.id
        self.assertIsNone(await self.consultations.fetch(cid))
        self.assertNotIn(keys.consultation(cid), self.cache)
        self.assertNotIn(keys.transcription(cid), self.cache)
        self.assertNotIn(keys.summaries(cid), self.cache)
        self.assertNotIn(keys.summary_by_type(cid, "medical"), self.cache)
        self.assertNotIn(keys.appointment(appointment.id), self.cache)
        self.assertNotIn(keys.user_appointments("p1", "all"), self.cache)
        self.assertNotIn(keys.user_appointments("p1", "past"), self.cache)
        self.assertIn(keys.user_appointments("p10", "all"), self.cache)
        self.assertIsNone(await self.appointments.get(appointment.id))
        self.assertIsNone(await self.consultations.get(cid))

    async def test_consultation_failure_still_deletes_appointment(self) -> None:
        appointment, consultation = await self._linked_pair()
        await self._warm(appointment.id, consultation.id)
        real_delete = self.store.delete

        async def failing_delete(table, *, where):
            if table == CONSULTATIONS:
                raise PersistenceError("consultations table is locked")
            return await real_delete(table, where=where)

        with patch.object(self.store, "delete", side_effect=failing_delete):
            with self.assertLogs("harvey", level="WARNING") as logs:
                deleted = await self.appointments.delete(appointment.id)

        self.assertTrue(deleted)
        self.assertIsNone(await self.appointments.fetch(appointment.id))
        self.assertIsNone(await self.appointments.get(appointment.id))
        self.assertIsNotNone(await self.consultations.fetch(consultation.id))
        output = "\n".join(logs.output)
        self.assertIn("consultations table is locked", output)
        self.assertIn(consultation.id, output)
        self.assertNotIn(keys.consultation(consultation.id), self.cache)

    async def test_completing_again_keeps_consultation_link(self) -> None:
        appointment, consultation = await self._linked_pair()

        self.assertTrue(await self.appointments.complete(appointment.id))
        completed = await self.appointments.fetch(appointment.id)
        self.assertEqual(completed.consultation_id, consultation.id)

        self.assertTrue(await self.appointments.delete(appointment.id))
        self.assertIsNone(await self.consultations.fetch(consultation.id))

    async def test_delete_without_consultation(self) -> None:
        appointment = await self.appointments.create(
            patient_id="p1", scheduled_for=NOW + timedelta(days=1)
        )
        self.assertTrue(await self.appointments.delete(appointment.id))
        self.assertIsNone(await self.appointments.fetch(appointment.id))

    async def test_delete_missing_appointment(self) -> None:
        with self.assertLogs("harvey.services.appointments", level="WARNING"):
            self.assertFalse(await self.appointments.delete("missing"))


if __name__ == "__main__":
    unittest.main()
