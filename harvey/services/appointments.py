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
    Appointment,
    AppointmentStatus,
    Consultation,
    PersistenceError,
    utcnow,
)
from ..persistence import APPOINTMENTS, Persistence, select_one
from .consultations import ConsultationService

logger = logging.getLogger(__name__)

VIEW_ALL = "all"
VIEW_UPCOMING = "upcoming"
VIEW_PAST = "past"


class AppointmentService:
    """Appointments and their list views per patient/doctor."""

    def __init__(
        self,
        store: Persistence,
        cache: CacheStore,
        consultations: ConsultationService,
        ttl: Optional[CacheTTLSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.cache = cache
        self.consultations = consultations
        self.ttl = ttl or CacheTTLSettings()
        self.clock = clock
        self.get = cached(cache, keys.appointment, self.ttl.appointment)(self.fetch)
        self.list_for_user = cached(
            cache, lambda user_id: keys.user_appointments(user_id, VIEW_ALL),
            self.ttl.appointment_lists,
        )(self._fetch_all)
        self.list_upcoming = cached(
            cache, lambda user_id: keys.user_appointments(user_id, VIEW_UPCOMING),
            self.ttl.appointment_lists,
        )(self._fetch_upcoming)
        self.list_past = cached(
            cache, lambda user_id: keys.user_appointments(user_id, VIEW_PAST),
            self.ttl.appointment_lists,
        )(self._fetch_past)

    async def create(
        self,
        *,
        patient_id: str,
        scheduled_for: datetime,
        title: str = "",
        doctor_id: Optional[str] = None,
        location: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Optional[Appointment]:
        try:
            row = await self.store.insert(
                APPOINTMENTS,
                {
                    "patient_id": patient_id,
                    "doctor_id": doctor_id,
                    "title": title,
                    "scheduled_for": scheduled_for,
                    "location": location,
                    "notes": notes,
                    "status": AppointmentStatus.SCHEDULED,
                },
            )
        except PersistenceError as exc:
            logger.error("Failed to create appointment for patient %s: %s", patient_id, exc)
            return None
        appointment = Appointment.from_row(row)
        await self.invalidate(appointment)
        return appointment

    async def update(self, appointment_id: str, **changes: Any) -> Optional[Appointment]:
        previous = await self.fetch(appointment_id)
        try:
            row = await self.store.update(APPOINTMENTS, appointment_id, changes)
        except PersistenceError as exc:
            logger.error("Failed to update appointment %s: %s", appointment_id, exc)
            return None
        if row is None:
            logger.warning("Appointment %s not found for update", appointment_id)
            return None
        appointment = Appointment.from_row(row)
        await self.invalidate(appointment, previous=previous)
        return appointment

    async def cancel(self, appointment_id: str) -> bool:
        return await self.update(appointment_id, status=AppointmentStatus.CANCELLED) is not None

    async def complete(self, appointment_id: str, consultation_id: Optional[str] = None) -> bool:
        changes: dict[str, Any] = {"status": AppointmentStatus.COMPLETED}
        # Omitting the consultation keeps an existing link.
        if consultation_id is not None:
            changes["consultation_id"] = consultation_id
        updated = await self.update(appointment_id, **changes)
        return updated is not None

    async def delete(self, appointment_id: str) -> bool:
        """Delete an appointment, cascading to its linked consultation.

        The consultation is deleted first. If that fails the failure is
        logged and the appointment is deleted anyway; caches for both are
        invalidated either way.
        """
        appointment = await self.fetch(appointment_id)
        if appointment is None:
            logger.warning("Appointment %s not found for delete", appointment_id)
            return False
        consultation_id = appointment.consultation_id
        if consultation_id:
            dependents = Cascade(
                "delete appointment",
                appointment_id=appointment_id,
                consultation_id=consultation_id,
            )
            dependents.step(
                f"delete consultation {consultation_id}",
                lambda: self.consultations.delete(consultation_id),
            )
            report = await dependents.run()
            if not report.ok:
                logger.warning(
                    "Consultation %s could not be deleted; deleting appointment %s anyway",
                    consultation_id,
                    appointment_id,
                )
        try:
            await self.store.delete(APPOINTMENTS, where={"id": appointment_id})
        except PersistenceError as exc:
            logger.error("Failed to delete appointment %s: %s", appointment_id, exc)
            return False
        await self.invalidate(appointment, label="delete appointment", include_consultation=True)
        logger.info("Deleted appointment %s", appointment_id)
        return True

    async def invalidate(
        self,
        appointment: Appointment,
        *,
        previous: Optional[Appointment] = None,
        label: str = "invalidate appointment",
        include_consultation: bool = False,
    ) -> CascadeReport:
        cascade = Cascade(label, appointment_id=appointment.id)
        cascade.invalidate(self.cache, keys.appointment(appointment.id))
        owners = set(appointment.owners)
        if previous is not None:
            owners.update(previous.owners)
        for owner in sorted(owners):
            cascade.invalidate_prefix(self.cache, keys.user_appointments_prefix(owner))
        if include_consultation and appointment.consultation_id:
            # The consultation row may be gone already; only ids are needed.
            dependent = Consultation(
                id=appointment.consultation_id,
                patient_id=appointment.patient_id,
                doctor_id=appointment.doctor_id,
            )
            for step in self.consultations.invalidation_cascade(dependent).steps:
                cascade.steps.append(step)
        return await cascade.run()

    async def fetch(self, appointment_id: str) -> Optional[Appointment]:
        try:
            row = await select_one(self.store, APPOINTMENTS, id=appointment_id)
        except PersistenceError as exc:
            logger.error("Error fetching appointment %s: %s", appointment_id, exc)
            return None
        return Appointment.from_row(row) if row else None

    async def _select_for_user(self, user_id: str, *, descending: bool = False) -> list[Appointment]:
        try:
            rows = await self.store.select(
                APPOINTMENTS,
                any_of={"patient_id": user_id, "doctor_id": user_id},
                order_by="scheduled_for",
                descending=descending,
            )
        except PersistenceError as exc:
            logger.error("Error fetching appointments for %s: %s", user_id, exc)
            return []
        return [Appointment.from_row(row) for row in rows]

    async def _fetch_all(self, user_id: str) -> list[Appointment]:
        return await self._select_for_user(user_id)

    async def _fetch_upcoming(self, user_id: str) -> list[Appointment]:
        now = self.clock()
        return [
            appointment
            for appointment in await self._select_for_user(user_id)
            if appointment.status is AppointmentStatus.SCHEDULED and appointment.scheduled_for >= now
        ]

    async def _fetch_past(self, user_id: str) -> list[Appointment]:
        now = self.clock()
        return [
            appointment
            for appointment in await self._select_for_user(user_id, descending=True)
            if appointment.status is AppointmentStatus.COMPLETED or appointment.scheduled_for < now
        ]
