from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path

from .app import HarveyApp
from .commands import doctor as cmd_doctor
from .config import find_config, load_settings
from .diffing import diff_words, render_text
from .models import Decision, ReviewDecision, SummaryType, format_timestamp

LOG_FORMAT = "%(levelname).1s | %(name)s | %(message)s"

C_RESET = "\033[0m"
LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[37m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}


class ColorFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = LEVEL_COLORS.get(record.levelno)
        if not color:
            return message
        return f"{color}{message}{C_RESET}"


class WarningBufferHandler(logging.Handler):
    """Keeps warnings and errors so they can be repeated after the command."""

    def __init__(self) -> None:
        super().__init__(level=logging.WARNING)
        self.records: list[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
        except Exception:  # pragma: no cover
            msg = record.getMessage()
        self.records.append(msg)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Consultation summaries and doctor review")
    parser.add_argument("--config", type=Path, help="Path to harvey.yaml")
    parser.add_argument("--log-level", default="INFO", help="Python logging level")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("doctor", help="Check configuration, database and cache")

    share_parser = subparsers.add_parser(
        "share", help="Issue a review link for a consultation"
    )
    share_parser.add_argument("consultation_id")
    share_parser.add_argument("--email", default=None, help="Doctor email to record on the link")

    resolve_parser = subparsers.add_parser(
        "resolve", help="Show what a share link holder would see"
    )
    resolve_parser.add_argument("share_hash")
    resolve_parser.add_argument(
        "--type",
        dest="summary_type",
        choices=[item.value for item in SummaryType],
        default=None,
        help="Summary type to show (defaults to medical)",
    )

    review_parser = subparsers.add_parser("review", help="Record a review decision")
    review_parser.add_argument("summary_id")
    review_parser.add_argument("--doctor", required=True, help="Reviewing doctor id")
    review_parser.add_argument(
        "--decision", required=True, choices=[item.value for item in Decision]
    )
    review_parser.add_argument(
        "--content-file", type=Path, default=None, help="Edited summary text (edit only)"
    )
    review_parser.add_argument("--notes", default=None, help="Review notes")

    pending_parser = subparsers.add_parser(
        "pending", help="List summaries awaiting a doctor's review"
    )
    pending_parser.add_argument("doctor_id")

    diff_parser = subparsers.add_parser("diff", help="Word diff between two text files")
    diff_parser.add_argument("old", type=Path)
    diff_parser.add_argument("new", type=Path)
    diff_parser.add_argument(
        "--lines", action="store_true", help="Line-oriented output with +/- markers"
    )
    return parser


def configure_logging(level_name: str) -> WarningBufferHandler:
    log_level = getattr(logging, level_name.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)

    color_handler = logging.StreamHandler()
    color_handler.setFormatter(ColorFormatter(LOG_FORMAT))
    root_logger.addHandler(color_handler)

    warn_buffer = WarningBufferHandler()
    warn_buffer.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(warn_buffer)
    return warn_buffer


async def _share(app: HarveyApp, consultation_id: str, email: str | None) -> int:
    link = await app.reviews.share(consultation_id, doctor_email=email)
    if link is None:
        print(f"Could not share consultation {consultation_id}")
        return 1
    print(link.url)
    print(f"Expires: {format_timestamp(link.expires_at)}")
    return 0


async def _resolve(app: HarveyApp, share_hash: str, summary_type: str | None) -> int:
    resolution = await app.shares.resolve(share_hash, summary_type=summary_type)
    if not resolution.ok:
        print(resolution.message)
        return 1
    details = resolution.details
    print(f"{details.title} ({details.status}, review: {details.review_status or '-'})")
    print(f"Patient: {details.patient_name or '-'}")
    if details.appointment_date:
        print(f"Appointment: {format_timestamp(details.appointment_date)}")
    if details.appointment_location:
        print(f"Location: {details.appointment_location}")
    if details.summary_content is None:
        print("No summary available")
        return 0
    print(f"\n[{details.summary_type}] summary {details.summary_id}")
    if details.reviewed_by_name:
        print(f"Reviewed by {details.reviewed_by_name}")
    print(details.summary_content)
    return 0


async def _review(app: HarveyApp, args: argparse.Namespace) -> int:
    content = None
    if args.content_file:
        content = args.content_file.read_text(encoding="utf-8")
    result = await app.reviews.submit(
        ReviewDecision(
            doctor_id=args.doctor,
            summary_id=args.summary_id,
            decision=Decision(args.decision),
            updated_content=content,
            review_notes=args.notes,
        )
    )
    print(result.message)
    if result.transaction_id:
        print(f"Review record: {result.transaction_id}")
    return 0 if result.success else 1


async def _pending(app: HarveyApp, doctor_id: str) -> int:
    feed = await app.reviews.review_feed(doctor_id)
    if not feed:
        print("Nothing awaiting review")
        return 0
    for patient_id, bucket in feed.items():
        print(f"{bucket.patient_name or patient_id}:")
        for review in bucket.reviews:
            when = format_timestamp(review.date) or "-"
            print(f"  {review.summary_id}  {review.summary_type:<13} {review.title} ({when})")
    return 0


def _diff(old: Path, new: Path, lines: bool) -> int:
    old_text = old.read_text(encoding="utf-8")
    new_text = new.read_text(encoding="utf-8")
    if lines:
        print(render_text(old_text, new_text))
        return 0
    for part in diff_words(old_text, new_text):
        if part.added:
            print(f"{{+{part.value}+}}", end="")
        elif part.removed:
            print(f"[-{part.value}-]", end="")
        else:
            print(part.value, end="")
    print()
    return 0


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    warn_buffer = configure_logging(args.log_level)

    if args.command == "diff":
        raise SystemExit(_diff(args.old, args.new, args.lines))

    config_path = find_config(args.config)
    settings = load_settings(config_path)
    app = HarveyApp.create(settings)
    status = 0
    try:
        match args.command:
            case "doctor":
                if config_path:
                    print(f"Config: OK ({config_path})")
                else:
                    print("Config: WARNING (no harvey.yaml found, using defaults)")
                report = asyncio.run(cmd_doctor.run(app))
                for line in report.checks:
                    print(line)
                status = 0 if report.ok else 1
            case "share":
                status = asyncio.run(_share(app, args.consultation_id, args.email))
            case "resolve":
                status = asyncio.run(_resolve(app, args.share_hash, args.summary_type))
            case "review":
                status = asyncio.run(_review(app, args))
            case "pending":
                status = asyncio.run(_pending(app, args.doctor_id))
            case _:
                parser.error("Unknown command")
    finally:
        app.close()
        if warn_buffer.records:
            print("\n\033[33mWarnings/Errors summary:\033[0m")
            for line in warn_buffer.records:
                print(f" - {line}")
    if status:
        raise SystemExit(status)


if __name__ == "__main__":
    main()
