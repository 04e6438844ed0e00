import unittest
from datetime import datetime, timedelta, timezone

from harvey.app import HarveyApp
from harvey.backends.sqlite import SQLiteStore
from harvey.cache import CacheStore
from harvey.config import Settings, SharingSettings
from harvey.models import INVALID_SHARE_LINK_MESSAGE, Decision, ReviewDecision, ReviewStatus, SummaryType


class MutableClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class ShareLinkTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.clock = MutableClock(datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc))
        settings = Settings(sharing=SharingSettings(base_url="https://harvey.example/"))
        self.app = HarveyApp.create(
            settings, store=SQLiteStore(":memory:"), cache=CacheStore(), clock=self.clock
        )
        await self.app.profiles.create("doc-1", full_name="Dr. Ada Moreno", is_doctor=True)
        await self.app.profiles.create("pat-1", full_name="Sam Rivera")
        self.consultation = await self.app.consultations.create(
            patient_id="pat-1", doctor_id="doc-1", title="Follow-up"
        )
        self.patient_summary = await self.app.consultations.create_summary(
            self.consultation.id, SummaryType.PATIENT, "Rest."
        )
        self.medical_summary = await self.app.consultations.create_summary(
            self.consultation.id, SummaryType.MEDICAL, "Viral URI."
        )

    def tearDown(self) -> None:
        self.app.close()


class TestIssue(ShareLinkTestCase):
    async def test_issue_sets_hash_expiry_and_pending_review(self) -> None:
        link = await self.app.shares.issue(self.consultation.id, doctor_email="ada@example.org")

        self.assertEqual(link.expires_at, self.clock.now + timedelta(days=3))
        self.assertEqual(link.url, f"https://harvey.example/doctor-review/{link.share_hash}")
        self.assertGreaterEqual(len(link.share_hash), 43)
        consultation = await self.app.consultations.get(self.consultation.id)
        self.assertEqual(consultation.share_hash, link.share_hash)
        self.assertEqual(consultation.doctor_email, "ada@example.org")
        self.assertIs(consultation.review_status, ReviewStatus.PENDING_REVIEW)

    async def test_reissue_replaces_previous_hash(self) -> None:
        first = await self.app.shares.issue(self.consultation.id)
        second = await self.app.shares.issue(self.consultation.id)

        self.assertNotEqual(first.share_hash, second.share_hash)
        self.assertFalse((await self.app.shares.resolve(first.share_hash)).ok)
        self.assertTrue((await self.app.shares.resolve(second.share_hash)).ok)

    async def test_reshare_keeps_final_review_status(self) -> None:
        await self.app.shares.issue(self.consultation.id)
        await self.app.reviews.submit(
            ReviewDecision(
                doctor_id="doc-1",
                summary_id=self.medical_summary.id,
                decision=Decision.APPROVE,
            )
        )
        await self.app.shares.issue(self.consultation.id)
        consultation = await self.app.consultations.fetch(self.consultation.id)
        self.assertIs(consultation.review_status, ReviewStatus.REVIEWED)

    async def test_issue_for_missing_consultation(self) -> None:
        with self.assertLogs("harvey.sharing", level="WARNING"):
            self.assertIsNone(await self.app.shares.issue("missing"))


class TestResolve(ShareLinkTestCase):
    async def test_resolve_projects_consultation(self) -> None:
        link = await self.app.shares.issue(self.consultation.id)

        resolution = await self.app.shares.resolve(link.share_hash)

        self.assertTrue(resolution.ok)
        details = resolution.details
        self.assertEqual(details.title, "Follow-up")
        self.assertEqual(details.patient_name, "Sam Rivera")
        self.assertEqual(details.summary_type, "medical")
        self.assertEqual(details.summary_content, "Viral URI.")
        self.assertEqual(details.review_status, "pending_review")

    async def test_resolve_by_requested_type(self) -> None:
        link = await self.app.shares.issue(self.consultation.id)
        resolution = await self.app.shares.resolve(link.share_hash, summary_type="patient")
        self.assertEqual(resolution.details.summary_id, self.patient_summary.id)

        fallback = await self.app.shares.resolve(link.share_hash, summary_type="unknown")
        self.assertEqual(fallback.details.summary_id, self.medical_summary.id)

    async def test_resolve_uses_linked_appointment_details(self) -> None:
        when = datetime(2026, 4, 30, 9, 0, tzinfo=timezone.utc)
        appointment = await self.app.appointments.create(
            patient_id="pat-1", doctor_id="doc-1", scheduled_for=when, location="Room 4"
        )
        await self.app.appointments.complete(appointment.id, self.consultation.id)
        link = await self.app.shares.issue(self.consultation.id)

        details = (await self.app.shares.resolve(link.share_hash)).details

        self.assertEqual(details.appointment_date, when)
        self.assertEqual(details.appointment_location, "Room 4")

    async def test_expired_and_unknown_links_look_the_same(self) -> None:
        link = await self.app.shares.issue(self.consultation.id)
        self.clock.now += timedelta(days=3)

        expired = await self.app.shares.resolve(link.share_hash)
        unknown = await self.app.shares.resolve("no-such-hash")
        empty = await self.app.shares.resolve("")

        self.assertEqual(expired, unknown)
        self.assertEqual(unknown, empty)
        self.assertFalse(expired.ok)
        self.assertEqual(expired.message, INVALID_SHARE_LINK_MESSAGE)

    async def test_link_is_live_until_expiry(self) -> None:
        link = await self.app.shares.issue(self.consultation.id)
        self.clock.now += timedelta(days=3) - timedelta(seconds=1)
        self.assertTrue((await self.app.shares.resolve(link.share_hash)).ok)

    async def test_revoked_link_no_longer_resolves(self) -> None:
        link = await self.app.shares.issue(self.consultation.id)
        self.assertTrue(await self.app.shares.revoke(self.consultation.id))
        self.assertFalse((await self.app.shares.resolve(link.share_hash)).ok)

    async def test_reviewer_name_after_review(self) -> None:
        link = await self.app.shares.issue(self.consultation.id)
        await self.app.reviews.submit(
            ReviewDecision(
                doctor_id="doc-1",
                summary_id=self.medical_summary.id,
                decision=Decision.EDIT,
                updated_content="Viral upper respiratory infection.",
            )
        )
        details = (await self.app.shares.resolve(link.share_hash)).details
        self.assertEqual(details.reviewed_by_name, "Dr. Ada Moreno")
        self.assertEqual(details.summary_original_content, "Viral URI.")
        self.assertTrue(details.summary_reviewed)


if __name__ == "__main__":
    unittest.main()
