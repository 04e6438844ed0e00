from __future__ import annotations

# Cache key families shared by the entity services.
# Prefix helpers end with the separator so "appointments:user:4:" never
# matches the lists of user 42.


def appointment(appointment_id: str) -> str:
    return f"appointment:{appointment_id}"


def user_appointments_prefix(user_id: str) -> str:
    return f"appointments:user:{user_id}:"


def user_appointments(user_id: str, view: str) -> str:
    return f"{user_appointments_prefix(user_id)}{view}"


def consultation(consultation_id: str) -> str:
    return f"consultation:{consultation_id}"


def user_consultations(user_id: str) -> str:
    return f"consultations:user:{user_id}"


def transcription(consultation_id: str) -> str:
    return f"transcription:{consultation_id}"


def summaries_prefix(consultation_id: str) -> str:
    return f"summaries:{consultation_id}:"


def summaries(consultation_id: str) -> str:
    return f"{summaries_prefix(consultation_id)}all"


def summary_by_type_prefix(consultation_id: str) -> str:
    return f"summary:{consultation_id}:"


def summary_by_type(consultation_id: str, summary_type: str) -> str:
    return f"{summary_by_type_prefix(consultation_id)}{summary_type}"


def profile(user_id: str) -> str:
    return f"profile:{user_id}"
