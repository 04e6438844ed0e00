from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..app import HarveyApp
from ..models import HarveyError
from ..persistence import (
    APPOINTMENTS,
    CONSULTATIONS,
    PROFILES,
    SUMMARIES,
    SUMMARY_REVIEWS,
    TRANSCRIPTIONS,
)

_PROBE_KEY = "doctor:probe"


@dataclass(slots=True)
class DoctorReport:
    ok: bool
    checks: list[str]


def check_line(label: str, status: str, detail: Optional[str] = None) -> str:
    if detail:
        return f"{label}: {status} ({detail})"
    return f"{label}: {status}"


async def run(app: HarveyApp) -> DoctorReport:
    checks: list[str] = []
    ok = True
    settings = app.settings

    database_path = Path(settings.storage.database_path)
    if database_path.exists():
        checks.append(check_line("Database", "OK", str(database_path)))
    else:
        checks.append(check_line("Database", "WARNING", f"not created yet: {database_path}"))

    for table in (PROFILES, APPOINTMENTS, CONSULTATIONS, TRANSCRIPTIONS, SUMMARIES, SUMMARY_REVIEWS):
        try:
            total = await app.store.count(table)
        except HarveyError as exc:
            ok = False
            checks.append(check_line(f"Table {table}", "ERROR", str(exc)))
            continue
        checks.append(check_line(f"Table {table}", "OK", f"{total} row(s)"))

    cache_settings = settings.cache
    app.cache.set(_PROBE_KEY, True, 60)
    probe_ok = app.cache.get(_PROBE_KEY) is True
    app.cache.invalidate(_PROBE_KEY)
    if probe_ok and app.cache.get(_PROBE_KEY) is None:
        checks.append(
            check_line(
                "Cache",
                "OK",
                f"max_entries={cache_settings.max_entries}, "
                f"purge={int(cache_settings.purge_fraction * 100)}%",
            )
        )
    else:
        ok = False
        checks.append(check_line("Cache", "ERROR", "set/get/invalidate probe failed"))

    ttl = cache_settings.ttl
    if ttl.appointment_lists > ttl.appointment or ttl.consultation_lists > ttl.consultation:
        checks.append(
            check_line("Cache TTLs", "WARNING", "list views outlive the entities they list")
        )
    else:
        checks.append(check_line("Cache TTLs", "OK"))

    sharing = settings.sharing
    checks.append(
        check_line(
            "Share links",
            "OK",
            f"expire after {sharing.expiry_days:g} day(s), {sharing.token_bytes} random bytes",
        )
    )
    return DoctorReport(ok=ok, checks=checks)
