from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from .. import keys
from ..cache import CacheStore
from ..cached import cached
from ..config import CacheTTLSettings
from ..invalidation import Cascade, CascadeReport
from ..models import (
    Consultation,
    ConsultationStatus,
    PersistenceError,
    Summary,
    SummaryType,
    Transcription,
    edit_fields,
    utcnow,
)
from ..persistence import (
    CONSULTATIONS,
    SUMMARIES,
    SUMMARY_REVIEWS,
    TRANSCRIPTIONS,
    Persistence,
    select_one,
)

logger = logging.getLogger(__name__)

# A consultation is complete once both the patient and the medical summary exist.
SUMMARIES_FOR_COMPLETION = 2
USER_CONSULTATIONS_LIMIT = 50


class ConsultationService:
    """Consultations plus their transcriptions and summaries."""

    def __init__(
        self,
        store: Persistence,
        cache: CacheStore,
        ttl: Optional[CacheTTLSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.cache = cache
        self.ttl = ttl or CacheTTLSettings()
        self.clock = clock
        self.get = cached(cache, keys.consultation, self.ttl.consultation)(self.fetch)
        self.list_for_user = cached(cache, keys.user_consultations, self.ttl.consultation_lists)(
            self._fetch_user_consultations
        )
        self.get_transcription = cached(cache, keys.transcription, self.ttl.transcription)(
            self._fetch_transcription
        )
        self.get_summaries = cached(cache, keys.summaries, self.ttl.summaries)(
            self._fetch_summaries
        )
        self.get_summary_by_type = cached(
            cache, lambda cid, summary_type: keys.summary_by_type(cid, _type_value(summary_type)),
            self.ttl.summaries,
        )(self._fetch_summary_by_type)

    async def create(
        self,
        *,
        patient_id: str,
        title: str,
        doctor_id: Optional[str] = None,
        appointment_date: Optional[datetime] = None,
        appointment_location: Optional[str] = None,
    ) -> Optional[Consultation]:
        try:
            row = await self.store.insert(
                CONSULTATIONS,
                {
                    "patient_id": patient_id,
                    "doctor_id": doctor_id,
                    "title": title,
                    "appointment_date": appointment_date,
                    "appointment_location": appointment_location,
                    "status": ConsultationStatus.PENDING,
                },
            )
        except PersistenceError as exc:
            logger.error("Failed to create consultation for patient %s: %s", patient_id, exc)
            return None
        consultation = Consultation.from_row(row)
        await self._owner_lists_cascade("create consultation", consultation).run()
        return consultation

    async def update(self, consultation_id: str, **changes: Any) -> Optional[Consultation]:
        previous = await self.fetch(consultation_id)
        try:
            row = await self.store.update(CONSULTATIONS, consultation_id, changes)
        except PersistenceError as exc:
            logger.error("Failed to update consultation %s: %s", consultation_id, exc)
            return None
        if row is None:
            logger.warning("Consultation %s not found for update", consultation_id)
            return None
        consultation = Consultation.from_row(row)
        await self.invalidate(consultation, previous=previous)
        return consultation

    async def attach_audio(
        self, consultation_id: str, file_path: str, user_id: str
    ) -> bool:
        """Record the uploaded recording and move the consultation to transcribing."""
        updated = await self.update(
            consultation_id,
            audio_file_path=file_path,
            status=ConsultationStatus.TRANSCRIBING,
        )
        if updated is None:
            return False
        self.cache.invalidate(keys.user_consultations(user_id))
        return True

    async def create_transcription(
        self,
        consultation_id: str,
        content: str,
        *,
        provider: Optional[str] = None,
        confidence_score: Optional[float] = None,
        language: Optional[str] = None,
    ) -> Optional[Transcription]:
        try:
            row = await self.store.insert(
                TRANSCRIPTIONS,
                {
                    "consultation_id": consultation_id,
                    "content": content,
                    "provider": provider,
                    "confidence_score": confidence_score,
                    "language": language,
                },
            )
        except PersistenceError as exc:
            logger.error("Failed to store transcription for %s: %s", consultation_id, exc)
            return None
        await self.update(consultation_id, status=ConsultationStatus.SUMMARIZING)
        self.cache.invalidate(keys.transcription(consultation_id))
        return Transcription.from_row(row)

    async def create_summary(
        self,
        consultation_id: str,
        summary_type: SummaryType | str,
        content: str,
        *,
        provider: Optional[str] = None,
    ) -> Optional[Summary]:
        type_value = _type_value(summary_type)
        try:
            row = await self.store.insert(
                SUMMARIES,
                {
                    "consultation_id": consultation_id,
                    "type": type_value,
                    "content": content,
                    "provider": provider,
                    "reviewed": False,
                },
            )
        except PersistenceError as exc:
            logger.error("Failed to store %s summary for %s: %s", type_value, consultation_id, exc)
            return None
        try:
            total = await self.store.count(SUMMARIES, where={"consultation_id": consultation_id})
        except PersistenceError as exc:
            logger.warning("Could not count summaries for %s: %s", consultation_id, exc)
            total = 0
        if total >= SUMMARIES_FOR_COMPLETION:
            await self.update(consultation_id, status=ConsultationStatus.COMPLETED)
        self.cache.invalidate_prefix(keys.summaries_prefix(consultation_id))
        self.cache.invalidate(keys.summary_by_type(consultation_id, type_value))
        return Summary.from_row(row)

    async def get_summary(self, summary_id: str) -> Optional[Summary]:
        try:
            row = await select_one(self.store, SUMMARIES, id=summary_id)
        except PersistenceError as exc:
            logger.error("Error fetching summary %s: %s", summary_id, exc)
            return None
        return Summary.from_row(row) if row else None

    async def update_summary_content(self, summary_id: str, content: str) -> Optional[Summary]:
        """Replace summary text, keeping the generated text in ``original_content``."""
        summary = await self.get_summary(summary_id)
        if summary is None:
            return None
        try:
            row = await self.store.update(SUMMARIES, summary_id, edit_fields(summary, content))
        except PersistenceError as exc:
            logger.error("Failed to edit summary %s: %s", summary_id, exc)
            return None
        if row is None:
            return None
        self.invalidate_summary(summary)
        return Summary.from_row(row)

    def invalidate_summary(self, summary: Summary) -> None:
        self.cache.invalidate_prefix(keys.summaries_prefix(summary.consultation_id))
        self.cache.invalidate(keys.summary_by_type(summary.consultation_id, summary.type.value))

    async def delete(self, consultation_id: str) -> bool:
        """Delete a consultation and everything derived from it.

        Transcriptions, summaries and review records go first on a
        best-effort basis; the consultation row itself must be removed for
        the call to succeed.
        """
        consultation = await self.fetch(consultation_id)
        if consultation is None:
            logger.warning("Consultation %s not found for delete", consultation_id)
            return False
        dependents = Cascade("delete consultation dependents", consultation_id=consultation_id)
        dependents.step("delete review records", lambda: self._delete_reviews(consultation_id))
        dependents.step(
            "delete summaries",
            lambda: self.store.delete(SUMMARIES, where={"consultation_id": consultation_id}),
        )
        dependents.step(
            "delete transcriptions",
            lambda: self.store.delete(TRANSCRIPTIONS, where={"consultation_id": consultation_id}),
        )
        await dependents.run()
        try:
            await self.store.delete(CONSULTATIONS, where={"id": consultation_id})
        except PersistenceError as exc:
            logger.error("Failed to delete consultation %s: %s", consultation_id, exc)
            return False
        await self.invalidate(consultation)
        logger.info("Deleted consultation %s", consultation_id)
        return True

    async def invalidate(
        self, consultation: Consultation, *, previous: Optional[Consultation] = None
    ) -> CascadeReport:
        return await self.invalidation_cascade(consultation, previous=previous).run()

    def invalidation_cascade(
        self,
        consultation: Consultation,
        *,
        previous: Optional[Consultation] = None,
        label: str = "invalidate consultation",
    ) -> Cascade:
        cid = consultation.id
        cascade = self._owner_lists_cascade(label, consultation, previous=previous)
        cascade.invalidate(self.cache, keys.consultation(cid))
        cascade.invalidate(self.cache, keys.transcription(cid))
        cascade.invalidate_prefix(self.cache, keys.summaries_prefix(cid))
        cascade.invalidate_prefix(self.cache, keys.summary_by_type_prefix(cid))
        return cascade

    def _owner_lists_cascade(
        self,
        label: str,
        consultation: Consultation,
        *,
        previous: Optional[Consultation] = None,
    ) -> Cascade:
        cascade = Cascade(label, consultation_id=consultation.id)
        owners = set(consultation.owners)
        if previous is not None:
            owners.update(previous.owners)
        for owner in sorted(owners):
            cascade.invalidate(self.cache, keys.user_consultations(owner))
        return cascade

    async def _delete_reviews(self, consultation_id: str) -> int:
        rows = await self.store.select(SUMMARIES, where={"consultation_id": consultation_id})
        removed = 0
        for row in rows:
            removed += await self.store.delete(SUMMARY_REVIEWS, where={"summary_id": row["id"]})
        return removed

    async def fetch(self, consultation_id: str) -> Optional[Consultation]:
        try:
            row = await select_one(self.store, CONSULTATIONS, id=consultation_id)
        except PersistenceError as exc:
            logger.error("Error fetching consultation %s: %s", consultation_id, exc)
            return None
        return Consultation.from_row(row) if row else None

    async def _fetch_user_consultations(self, user_id: str) -> list[Consultation]:
        try:
            rows = await self.store.select(
                CONSULTATIONS,
                any_of={"patient_id": user_id, "doctor_id": user_id},
                order_by="created_at",
                descending=True,
                limit=USER_CONSULTATIONS_LIMIT,
            )
        except PersistenceError as exc:
            logger.error("Error fetching consultations for %s: %s", user_id, exc)
            return []
        return [Consultation.from_row(row) for row in rows]

    async def _fetch_transcription(self, consultation_id: str) -> Optional[Transcription]:
        try:
            rows = await self.store.select(
                TRANSCRIPTIONS,
                where={"consultation_id": consultation_id},
                order_by="created_at",
                descending=True,
                limit=1,
            )
        except PersistenceError as exc:
            logger.error("Error fetching transcription for %s: %s", consultation_id, exc)
            return None
        return Transcription.from_row(rows[0]) if rows else None

    async def _fetch_summaries(self, consultation_id: str) -> list[Summary]:
        try:
            rows = await self.store.select(
                SUMMARIES, where={"consultation_id": consultation_id}, order_by="created_at"
            )
        except PersistenceError as exc:
            logger.error("Error fetching summaries for %s: %s", consultation_id, exc)
            return []
        return [Summary.from_row(row) for row in rows]

    async def _fetch_summary_by_type(
        self, consultation_id: str, summary_type: SummaryType | str
    ) -> Optional[Summary]:
        type_value = _type_value(summary_type)
        try:
            row = await select_one(
                self.store, SUMMARIES, consultation_id=consultation_id, type=type_value
            )
        except PersistenceError as exc:
            logger.error("Error fetching %s summary for %s: %s", type_value, consultation_id, exc)
            return None
        return Summary.from_row(row) if row else None


def _type_value(summary_type: SummaryType | str) -> str:
    if isinstance(summary_type, SummaryType):
        return summary_type.value
    return SummaryType(summary_type).value
