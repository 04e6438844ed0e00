from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from .diffing import DiffPart, diff_words
from .models import (
    AuthorizationDenied,
    Consultation,
    Decision,
    PersistenceError,
    Profile,
    ReviewDecision,
    ReviewResult,
    ReviewStatus,
    Summary,
    edit_fields,
    utcnow,
)
from .persistence import CONSULTATIONS, SUMMARIES, SUMMARY_REVIEWS, Persistence
from .services.consultations import ConsultationService
from .services.profiles import ProfileService
from .sharing import ShareLink, ShareLinks

logger = logging.getLogger(__name__)

_DECISION_OUTCOME = {
    Decision.APPROVE: (ReviewStatus.REVIEWED, "Summary approved"),
    Decision.EDIT: (ReviewStatus.REVIEWED, "Summary updated and approved"),
    Decision.REJECT: (ReviewStatus.REJECTED, "Summary rejected"),
}


@dataclass(frozen=True, slots=True)
class PendingReview:
    consultation_id: str
    title: str
    patient_id: str
    patient_name: Optional[str]
    date: Optional[datetime]
    summary_id: str
    summary_type: str
    review_status: Optional[str]
    reviewed_at: Optional[datetime]


@dataclass(slots=True)
class PatientReviews:
    patient_name: Optional[str]
    reviews: list[PendingReview] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class SummaryForReview:
    summary: Summary
    consultation: Consultation
    patient: Optional[Profile]


class ReviewWorkflow:
    """Doctor review of AI-generated consultation summaries.

    A consultation enters ``pending_review`` when it is shared. The assigned
    doctor then records one decision per summary. The first decision
    finalizes the consultation: approve and edit move it to ``reviewed``,
    reject moves it to ``rejected``. Later decisions on sibling summaries
    leave that status alone. A second decision on a summary, or
    any decision on an unshared consultation, is refused without touching
    any row. Writes go consultation, summary, audit record; when one fails
    the earlier rows are put back.
    """

    def __init__(
        self,
        store: Persistence,
        consultations: ConsultationService,
        profiles: ProfileService,
        shares: ShareLinks,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.consultations = consultations
        self.profiles = profiles
        self.shares = shares
        self.clock = clock

    async def share(
        self, consultation_id: str, *, doctor_email: Optional[str] = None
    ) -> Optional[ShareLink]:
        return await self.shares.issue(consultation_id, doctor_email=doctor_email)

    async def can_review_summary(self, summary_id: str, user_id: str) -> bool:
        try:
            await self._authorize(summary_id, user_id)
        except AuthorizationDenied:
            return False
        return True

    async def summary_for_review(self, summary_id: str) -> Optional[SummaryForReview]:
        summary = await self.consultations.get_summary(summary_id)
        if summary is None:
            return None
        consultation = await self.consultations.get(summary.consultation_id)
        if consultation is None:
            return None
        patient = await self.profiles.get(consultation.patient_id)
        return SummaryForReview(summary=summary, consultation=consultation, patient=patient)

    async def preview(self, summary_id: str, proposed_content: str) -> Optional[list[DiffPart]]:
        summary = await self.consultations.get_summary(summary_id)
        if summary is None:
            return None
        return diff_words(summary.content, proposed_content)

    async def submit(self, decision: ReviewDecision) -> ReviewResult:
        if decision.decision is Decision.EDIT and not (decision.updated_content or "").strip():
            return ReviewResult(False, "Edited content is required for an edit decision")
        try:
            summary, consultation = await self._authorize(decision.summary_id, decision.doctor_id)
        except AuthorizationDenied as exc:
            logger.warning(
                "Review of summary %s by %s refused: %s",
                decision.summary_id,
                decision.doctor_id,
                exc,
            )
            return ReviewResult(False, str(exc))
        if consultation.review_status is None:
            logger.info(
                "Ignoring %s decision on unshared consultation %s",
                decision.decision.value,
                consultation.id,
            )
            return ReviewResult(False, "This consultation is not awaiting review")
        if summary.reviewed:
            logger.info(
                "Ignoring %s decision on already reviewed summary %s",
                decision.decision.value,
                summary.id,
            )
            return ReviewResult(False, "This summary has already been reviewed")
        new_status, message = _DECISION_OUTCOME[decision.decision]
        summary_changes = {
            "reviewed": True,
            "reviewed_at": decision.timestamp,
            "reviewed_by": decision.doctor_id,
        }
        if decision.decision is Decision.EDIT:
            summary_changes.update(edit_fields(summary, decision.updated_content))
        # Prior values of every row written so far, restored newest first on failure.
        undo: list[tuple[str, str, dict]] = []
        # Only the first decision moves the consultation out of pending_review.
        finalizes = consultation.review_status is ReviewStatus.PENDING_REVIEW
        try:
            if finalizes:
                await self.store.update(
                    CONSULTATIONS,
                    consultation.id,
                    {"review_status": new_status, "review_notes": decision.review_notes},
                )
                undo.append(
                    (
                        CONSULTATIONS,
                        consultation.id,
                        {
                            "review_status": consultation.review_status,
                            "review_notes": consultation.review_notes,
                        },
                    )
                )
            await self.store.update(SUMMARIES, summary.id, summary_changes)
            undo.append((SUMMARIES, summary.id, _summary_snapshot(summary)))
            record = await self.store.insert(
                SUMMARY_REVIEWS,
                {
                    "summary_id": summary.id,
                    "doctor_id": decision.doctor_id,
                    "decision": decision.decision,
                    "previous_content": summary.content,
                    "updated_content": decision.updated_content,
                    "review_notes": decision.review_notes,
                    "created_at": decision.timestamp,
                },
            )
        except PersistenceError as exc:
            logger.error("Failed to record review of summary %s: %s", summary.id, exc)
            await self._restore(undo)
            await self.consultations.invalidate(consultation)
            return ReviewResult(False, "Could not record the review decision")
        await self.consultations.invalidate(consultation)
        final_status = new_status if finalizes else consultation.review_status
        logger.info(
            "Recorded %s decision on summary %s (consultation %s -> %s)",
            decision.decision.value,
            summary.id,
            consultation.id,
            final_status.value,
        )
        return ReviewResult(True, message, record["id"])

    async def pending_reviews(self, doctor_id: str) -> list[PendingReview]:
        """Unreviewed summaries of every shared consultation assigned to ``doctor_id``."""
        try:
            rows = await self.store.select(
                CONSULTATIONS,
                where={"doctor_id": doctor_id},
                order_by="created_at",
                descending=True,
            )
        except PersistenceError as exc:
            logger.error("Error fetching pending reviews for %s: %s", doctor_id, exc)
            return []
        pending: list[PendingReview] = []
        for row in rows:
            consultation = Consultation.from_row(row)
            if consultation.review_status is None:
                continue
            patient = await self.profiles.get(consultation.patient_id)
            for summary in await self.consultations.get_summaries(consultation.id):
                if summary.reviewed:
                    continue
                pending.append(
                    PendingReview(
                        consultation_id=consultation.id,
                        title=consultation.title,
                        patient_id=consultation.patient_id,
                        patient_name=patient.full_name if patient else None,
                        date=consultation.appointment_date or consultation.created_at,
                        summary_id=summary.id,
                        summary_type=summary.type.value,
                        review_status=consultation.review_status.value,
                        reviewed_at=summary.reviewed_at,
                    )
                )
        return pending

    async def review_feed(self, doctor_id: str) -> dict[str, PatientReviews]:
        feed: dict[str, PatientReviews] = {}
        for review in await self.pending_reviews(doctor_id):
            bucket = feed.setdefault(review.patient_id, PatientReviews(review.patient_name))
            bucket.reviews.append(review)
        return feed

    async def _authorize(self, summary_id: str, user_id: str) -> tuple[Summary, Consultation]:
        profile = await self.profiles.fetch(user_id)
        if profile is None or not profile.is_doctor:
            raise AuthorizationDenied("Only doctors can review summaries")
        summary = await self.consultations.get_summary(summary_id)
        if summary is None:
            raise AuthorizationDenied("Summary not found")
        consultation = await self.consultations.fetch(summary.consultation_id)
        if consultation is None or consultation.doctor_id != user_id:
            raise AuthorizationDenied("You are not the doctor assigned to this consultation")
        return summary, consultation

    async def _restore(self, undo: list[tuple[str, str, dict]]) -> None:
        for table, row_id, previous in reversed(undo):
            try:
                await self.store.update(table, row_id, previous)
            except PersistenceError as exc:
                logger.error("Could not restore %s row %s after failed review: %s", table, row_id, exc)


def _summary_snapshot(summary: Summary) -> dict:
    return {
        "content": summary.content,
        "original_content": summary.original_content,
        "reviewed": summary.reviewed,
        "reviewed_at": summary.reviewed_at,
        "reviewed_by": summary.reviewed_by,
    }
