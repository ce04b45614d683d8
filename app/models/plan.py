from sqlalchemy import func
from sqlalchemy.dialects.postgresql import JSONB
from app.extensions import db


class PlanDefinition(db.Model):
    """Admin-managed plan row. Overrides the static table in app.billing.plans."""
    __tablename__ = "plan_definitions"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True)
    display_name = db.Column(db.String(128), nullable=False)
    description = db.Column(db.String(500), nullable=False, default="")
    price = db.Column(db.Numeric(12, 2), nullable=False)
    duration_days = db.Column(db.Integer, nullable=False, default=30)  # 0 = lifetime
    features = db.Column(db.JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=list)
    max_listings = db.Column(db.Integer, nullable=False, default=-1)  # -1 = unlimited
    boost_credits = db.Column(db.Integer, nullable=False, default=0)
    allowed_roles = db.Column(db.JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=lambda: ["all"])
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    visible = db.Column(db.Boolean, nullable=False, default=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        db.Index("ix_plan_definitions_active_order", "is_active", "sort_order"),
    )

    def __repr__(self) -> str:
        return f"<PlanDefinition name={self.name!r} price={self.price} active={self.is_active}>"
