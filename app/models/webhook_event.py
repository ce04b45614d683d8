from sqlalchemy import func
from sqlalchemy.dialects.postgresql import JSONB
from app.extensions import db


class ProcessedWebhookEvent(db.Model):
    """
    One row per Stripe event we have applied. The unique index on event_id is
    what makes concurrent redeliveries safe; rows are pruned after the
    retention window (flask billing prune-webhook-events).
    """
    __tablename__ = "processed_webhook_events"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.String(255), nullable=False, unique=True, index=True)
    event_type = db.Column(db.String(80), nullable=False, index=True)
    meta = db.Column(db.JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)
    notes = db.Column(db.String(255), nullable=True)

    processed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)

    def __repr__(self) -> str:
        return f"<ProcessedWebhookEvent event_id={self.event_id!r} type={self.event_type!r}>"
