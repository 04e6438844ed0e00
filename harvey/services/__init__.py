from __future__ import annotations

from .appointments import AppointmentService
from .consultations import ConsultationService
from .profiles import ProfileService

__all__ = [
    "AppointmentService",
    "ConsultationService",
    "ProfileService",
]
