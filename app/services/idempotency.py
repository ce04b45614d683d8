"""
Webhook idempotency guard.

A Stripe event is applied at most once. The ProcessedWebhookEvent row is
written in the same transaction as the reconciler's mutations, so when two
deliveries of one event race past `is_processed`, the loser's commit trips
the unique index on event_id and everything it did is rolled back.
"""
from datetime import timedelta
from typing import Any, Callable

from flask import current_app
from sqlalchemy.exc import IntegrityError

from app.errors import DuplicateEventError
from app.extensions import db
from app.models import ProcessedWebhookEvent
from app.utils.helpers import utcnow


def is_processed(event_id: str) -> bool:
    return (
        db.session.query(ProcessedWebhookEvent.id)
        .filter(ProcessedWebhookEvent.event_id == event_id)
        .first()
        is not None
    )


def _stage_record(event: dict, *, notes: str | None = None, meta: dict | None = None) -> ProcessedWebhookEvent:
    record = ProcessedWebhookEvent(
        event_id=event["id"],
        event_type=event["type"],
        processed_at=utcnow(),
        meta={
            "livemode": event.get("livemode"),
            "api_version": event.get("api_version"),
            **(meta or {}),
        },
        notes=notes,
    )
    db.session.add(record)
    return record


def commit_processed(event: dict, *, notes: str | None = None, meta: dict | None = None) -> None:
    """
    Record the event and commit everything staged in the session with it.
    A uniqueness violation on event_id means a concurrent delivery won:
    roll back and raise DuplicateEventError (callers treat it as success).
    """
    _stage_record(event, notes=notes, meta=meta)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        if is_processed(event["id"]):
            current_app.logger.warning(
                "billing.webhook.race_duplicate",
                extra={"event_id": event["id"], "event_type": event["type"]},
            )
            raise DuplicateEventError("Event already processed")
        raise


def process_once(event: dict, apply: Callable[[dict], Any]) -> tuple[bool, Any]:
    """
    Run `apply(event)` unless the event was already handled.
    Returns (duplicate, result). `apply` must stage its changes without
    committing; the commit happens together with the processed record.
    """
    if is_processed(event["id"]):
        current_app.logger.info(
            "billing.webhook.duplicate",
            extra={"event_id": event["id"], "event_type": event["type"]},
        )
        return True, None

    result = apply(event)
    meta = {"outcome": getattr(result, "status", None)}
    try:
        commit_processed(event, meta=meta)
    except DuplicateEventError:
        return True, None
    return False, result


def prune(older_than_days: int | None = None) -> int:
    days = older_than_days if older_than_days is not None else current_app.config.get("WEBHOOK_EVENT_RETENTION_DAYS", 30)
    cutoff = utcnow() - timedelta(days=int(days))
    deleted = (
        db.session.query(ProcessedWebhookEvent)
        .filter(ProcessedWebhookEvent.processed_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.session.commit()
    current_app.logger.info("billing.webhook.pruned", extra={"deleted": deleted, "days": int(days)})
    return deleted
