from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from .config import SharingSettings
from .models import (
    INVALID_SHARE_LINK_MESSAGE,
    Consultation,
    NotFoundOrExpired,
    PersistenceError,
    ReviewStatus,
    Summary,
    SummaryType,
    parse_timestamp,
    utcnow,
)
from .persistence import APPOINTMENTS, CONSULTATIONS, Persistence, select_one
from .services.consultations import ConsultationService
from .services.profiles import ProfileService

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ShareLink:
    consultation_id: str
    share_hash: str
    expires_at: datetime
    url: str


@dataclass(frozen=True, slots=True)
class SharedConsultation:
    """Read-only snapshot handed to an anonymous link holder."""

    consultation_id: str
    title: str
    status: str
    review_status: Optional[str]
    patient_name: Optional[str]
    appointment_date: Optional[datetime]
    appointment_location: Optional[str]
    summary_id: Optional[str]
    summary_type: Optional[str]
    summary_content: Optional[str]
    summary_original_content: Optional[str]
    summary_reviewed: bool
    summary_reviewed_at: Optional[datetime]
    reviewed_by_name: Optional[str]
    doctor_id: Optional[str]
    shared_to_email: Optional[str]


@dataclass(frozen=True, slots=True)
class ShareResolution:
    details: Optional[SharedConsultation] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.details is not None

    @classmethod
    def invalid(cls) -> "ShareResolution":
        return cls(details=None, message=INVALID_SHARE_LINK_MESSAGE)


class ShareLinks:
    """Issues and resolves expiring anonymous links to a consultation.

    A consultation carries at most one live link: issuing a new one
    overwrites the previous hash and expiry. Unknown and expired hashes
    resolve to the same generic outcome.
    """

    def __init__(
        self,
        store: Persistence,
        consultations: ConsultationService,
        profiles: ProfileService,
        settings: Optional[SharingSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.consultations = consultations
        self.profiles = profiles
        self.settings = settings or SharingSettings()
        self.clock = clock

    def share_url(self, share_hash: str) -> str:
        return self.settings.base_url + self.settings.path_template.format(hash=share_hash)

    async def issue(
        self, consultation_id: str, *, doctor_email: Optional[str] = None
    ) -> Optional[ShareLink]:
        consultation = await self.consultations.fetch(consultation_id)
        if consultation is None:
            logger.warning("Cannot share missing consultation %s", consultation_id)
            return None
        share_hash = secrets.token_urlsafe(self.settings.token_bytes)
        expires_at = self.clock() + timedelta(days=self.settings.expiry_days)
        changes: dict = {
            "share_hash": share_hash,
            "share_hash_expires_at": expires_at,
        }
        if doctor_email:
            changes["doctor_email"] = doctor_email
        if consultation.review_status is None:
            changes["review_status"] = ReviewStatus.PENDING_REVIEW
        updated = await self.consultations.update(consultation_id, **changes)
        if updated is None:
            return None
        if consultation.share_hash:
            logger.info("Replaced share link for consultation %s", consultation_id)
        else:
            logger.info("Shared consultation %s until %s", consultation_id, expires_at.isoformat())
        return ShareLink(
            consultation_id=consultation_id,
            share_hash=share_hash,
            expires_at=expires_at,
            url=self.share_url(share_hash),
        )

    async def revoke(self, consultation_id: str) -> bool:
        updated = await self.consultations.update(
            consultation_id, share_hash=None, share_hash_expires_at=None
        )
        return updated is not None

    async def resolve(
        self, share_hash: str, *, summary_type: SummaryType | str | None = None
    ) -> ShareResolution:
        try:
            consultation = await self._live_consultation(share_hash)
        except NotFoundOrExpired:
            return ShareResolution.invalid()
        details = await self._project(consultation, summary_type)
        return ShareResolution(details=details)

    async def _live_consultation(self, share_hash: str) -> Consultation:
        if not share_hash:
            raise NotFoundOrExpired()
        try:
            row = await select_one(self.store, CONSULTATIONS, share_hash=share_hash)
        except PersistenceError as exc:
            logger.error("Share link lookup failed: %s", exc)
            raise NotFoundOrExpired() from exc
        if row is None:
            raise NotFoundOrExpired()
        consultation = Consultation.from_row(row)
        expires_at = consultation.share_hash_expires_at
        if expires_at is None or self.clock() >= expires_at:
            logger.debug("Share link for consultation %s has expired", consultation.id)
            raise NotFoundOrExpired()
        return consultation

    async def _project(
        self, consultation: Consultation, summary_type: SummaryType | str | None
    ) -> SharedConsultation:
        patient = await self.profiles.get(consultation.patient_id)
        appointment_date = consultation.appointment_date
        appointment_location = consultation.appointment_location
        try:
            appointment = await select_one(
                self.store, APPOINTMENTS, consultation_id=consultation.id
            )
        except PersistenceError as exc:
            logger.warning("Appointment lookup for shared consultation failed: %s", exc)
            appointment = None
        if appointment:
            appointment_date = appointment_date or parse_timestamp(appointment.get("scheduled_for"))
            appointment_location = appointment_location or appointment.get("location")
        summary = _pick_summary(
            await self.consultations.get_summaries(consultation.id), summary_type
        )
        reviewer_name = None
        if summary and summary.reviewed_by:
            reviewer = await self.profiles.get(summary.reviewed_by)
            reviewer_name = reviewer.full_name if reviewer else None
        return SharedConsultation(
            consultation_id=consultation.id,
            title=consultation.title,
            status=consultation.status.value,
            review_status=consultation.review_status.value if consultation.review_status else None,
            patient_name=patient.full_name if patient else None,
            appointment_date=appointment_date,
            appointment_location=appointment_location,
            summary_id=summary.id if summary else None,
            summary_type=summary.type.value if summary else None,
            summary_content=summary.content if summary else None,
            summary_original_content=summary.original_content if summary else None,
            summary_reviewed=bool(summary and summary.reviewed),
            summary_reviewed_at=summary.reviewed_at if summary else None,
            reviewed_by_name=reviewer_name,
            doctor_id=consultation.doctor_id,
            shared_to_email=consultation.doctor_email,
        )


def _pick_summary(
    summaries: list[Summary], summary_type: SummaryType | str | None
) -> Optional[Summary]:
    if not summaries:
        return None
    try:
        wanted = SummaryType(summary_type) if summary_type else SummaryType.MEDICAL
    except ValueError:
        wanted = SummaryType.MEDICAL
    for summary in summaries:
        if summary.type is wanted:
            return summary
    return summaries[0]
