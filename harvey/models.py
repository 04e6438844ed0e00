from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class AppointmentStatus(Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ConsultationStatus(Enum):
    PENDING = "pending"
    TRANSCRIBING = "transcribing"
    SUMMARIZING = "summarizing"
    COMPLETED = "completed"


class ReviewStatus(Enum):
    """Review state of a consultation; ``None`` on the row means never shared."""

    PENDING_REVIEW = "pending_review"
    REVIEWED = "reviewed"
    REJECTED = "rejected"


class SummaryType(Enum):
    PATIENT = "patient"
    MEDICAL = "medical"
    COMPREHENSIVE = "comprehensive"


class Decision(Enum):
    APPROVE = "approve"
    REJECT = "reject"
    EDIT = "edit"


class HarveyError(Exception):
    """Base class for errors raised by the consultation core."""


class PersistenceError(HarveyError):
    """Raised by a persistence backend when a read or write cannot complete."""


class CacheError(HarveyError):
    """Internal cache failure; always recovered inside the cache layer."""


class AuthorizationDenied(HarveyError):
    """Raised when a reviewer is not the doctor assigned to the consultation."""


class NotFoundOrExpired(HarveyError):
    """Share link is unknown or past its expiry. The reason is never exposed."""

    def __init__(self) -> None:
        super().__init__(INVALID_SHARE_LINK_MESSAGE)


class PartialCascadeFailure(HarveyError):
    """A dependent step of an invalidation/delete cascade failed."""

    def __init__(self, step: str, cause: BaseException) -> None:
        super().__init__(f"{step}: {cause}")
        self.step = step
        self.cause = cause


INVALID_SHARE_LINK_MESSAGE = "Invalid or expired share link."


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class CacheEntry:
    value: Any
    created_at: float
    expires_at: float

    def is_live(self, now: float) -> bool:
        return now < self.expires_at


class EmergencyInfo(BaseModel):
    """Structured replacement for the free-form emergency blob on a profile."""

    schema_version: int = 1
    blood_type: Optional[str] = None
    allergies: List[str] = Field(default_factory=list)
    conditions: List[str] = Field(default_factory=list)
    medications: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    pending_tests: List[str] = Field(default_factory=list)
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None


@dataclass(slots=True)
class Profile:
    id: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    is_doctor: bool = False
    is_admin: bool = False
    specialty: Optional[str] = None
    institution: Optional[str] = None
    avatar_url: Optional[str] = None
    emergency_info: Optional[EmergencyInfo] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Profile":
        raw_info = row.get("emergency_info")
        info = None
        if raw_info:
            payload = json.loads(raw_info) if isinstance(raw_info, str) else raw_info
            info = EmergencyInfo.model_validate(payload)
        return cls(
            id=row["id"],
            full_name=row.get("full_name"),
            email=row.get("email"),
            is_doctor=bool(row.get("is_doctor")),
            is_admin=bool(row.get("is_admin")),
            specialty=row.get("specialty"),
            institution=row.get("institution"),
            avatar_url=row.get("avatar_url"),
            emergency_info=info,
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )


@dataclass(slots=True)
class Appointment:
    id: str
    patient_id: str
    scheduled_for: datetime
    title: str = ""
    doctor_id: Optional[str] = None
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    consultation_id: Optional[str] = None
    location: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def owners(self) -> list[str]:
        return [owner for owner in (self.patient_id, self.doctor_id) if owner]

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Appointment":
        return cls(
            id=row["id"],
            patient_id=row["patient_id"],
            scheduled_for=parse_timestamp(row["scheduled_for"]),
            title=row.get("title") or "",
            doctor_id=row.get("doctor_id"),
            status=AppointmentStatus(row.get("status") or "scheduled"),
            consultation_id=row.get("consultation_id"),
            location=row.get("location"),
            notes=row.get("notes"),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )


@dataclass(slots=True)
class Consultation:
    id: str
    patient_id: str
    title: str = ""
    doctor_id: Optional[str] = None
    status: ConsultationStatus = ConsultationStatus.PENDING
    review_status: Optional[ReviewStatus] = None
    review_notes: Optional[str] = None
    share_hash: Optional[str] = None
    share_hash_expires_at: Optional[datetime] = None
    doctor_email: Optional[str] = None
    appointment_date: Optional[datetime] = None
    appointment_location: Optional[str] = None
    audio_file_path: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def owners(self) -> list[str]:
        return [owner for owner in (self.patient_id, self.doctor_id) if owner]

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Consultation":
        review_status = row.get("review_status")
        return cls(
            id=row["id"],
            patient_id=row["patient_id"],
            title=row.get("title") or "",
            doctor_id=row.get("doctor_id"),
            status=ConsultationStatus(row.get("status") or "pending"),
            review_status=ReviewStatus(review_status) if review_status else None,
            review_notes=row.get("review_notes"),
            share_hash=row.get("share_hash"),
            share_hash_expires_at=parse_timestamp(row.get("share_hash_expires_at")),
            doctor_email=row.get("doctor_email"),
            appointment_date=parse_timestamp(row.get("appointment_date")),
            appointment_location=row.get("appointment_location"),
            audio_file_path=row.get("audio_file_path"),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )


@dataclass(slots=True)
class Transcription:
    id: str
    consultation_id: str
    content: str
    provider: Optional[str] = None
    confidence_score: Optional[float] = None
    language: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Transcription":
        return cls(
            id=row["id"],
            consultation_id=row["consultation_id"],
            content=row.get("content") or "",
            provider=row.get("provider"),
            confidence_score=row.get("confidence_score"),
            language=row.get("language"),
            created_at=parse_timestamp(row.get("created_at")),
        )


@dataclass(slots=True)
class Summary:
    id: str
    consultation_id: str
    type: SummaryType
    content: str
    original_content: Optional[str] = None
    provider: Optional[str] = None
    reviewed: bool = False
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def edited(self) -> bool:
        return self.original_content is not None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Summary":
        return cls(
            id=row["id"],
            consultation_id=row["consultation_id"],
            type=SummaryType(row["type"]),
            content=row.get("content") or "",
            original_content=row.get("original_content"),
            provider=row.get("provider"),
            reviewed=bool(row.get("reviewed")),
            reviewed_at=parse_timestamp(row.get("reviewed_at")),
            reviewed_by=row.get("reviewed_by"),
            created_at=parse_timestamp(row.get("created_at")),
        )


@dataclass(slots=True)
class ReviewDecision:
    doctor_id: str
    summary_id: str
    decision: Decision
    updated_content: Optional[str] = None
    review_notes: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True)
class ReviewResult:
    success: bool
    message: str
    transaction_id: Optional[str] = None


def edit_fields(summary: Summary, new_content: str) -> Dict[str, Any]:
    """Column changes for editing ``summary``; the first edit keeps the pre-edit text."""
    changes: Dict[str, Any] = {"content": new_content}
    if summary.original_content is None:
        changes["original_content"] = summary.content
    return changes


def parse_timestamp(value: object) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()
