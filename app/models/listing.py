from sqlalchemy import func, CheckConstraint
from app.extensions import db

LISTING_ACTIVE = "active"
LISTING_SOLD = "sold"
LISTING_DELETED = "deleted"
TERMINAL_STATUSES = frozenset({LISTING_SOLD, LISTING_DELETED})

BOOST_TYPE_USER = "user"
BOOST_TYPE_ADMIN = "admin"


class Listing(db.Model):
    """
    The slice of a marketplace listing this service owns: who owns it,
    whether it is still sellable, and its boost placement.
    """
    __tablename__ = "listings"

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True, index=True)
    title = db.Column(db.String(255), nullable=False, default="")
    status = db.Column(db.String(20), nullable=False, default=LISTING_ACTIVE, server_default=LISTING_ACTIVE)

    # isBoosted is never read on its own; see app.billing.state.boost_state
    is_boosted = db.Column(db.Boolean, nullable=False, default=False)
    boost_expiry = db.Column(db.DateTime(timezone=True), nullable=True)
    boost_priority = db.Column(db.Integer, nullable=False, default=0, server_default=db.text("0"))

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    boost_history = db.relationship(
        "BoostHistoryEntry",
        back_populates="listing",
        order_by="BoostHistoryEntry.id",
        lazy="select",
    )

    __table_args__ = (
        CheckConstraint("boost_priority >= 0 AND boost_priority <= 100", name="ck_listings_boost_priority_range"),
        CheckConstraint("status IN ('active','sold','deleted')", name="ck_listings_status_valid"),
        db.Index("ix_listings_boost_rank", "is_boosted", "boost_priority", "boost_expiry"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<Listing id={self.id} owner_id={self.owner_id} status={self.status!r} boosted={self.is_boosted}>"


class BoostHistoryEntry(db.Model):
    __tablename__ = "boost_history"

    id = db.Column(db.Integer, primary_key=True)
    listing_id = db.Column(db.Integer, db.ForeignKey("listings.id", ondelete="CASCADE"), nullable=False, index=True)
    boosted_at = db.Column(db.DateTime(timezone=True), nullable=False)
    boosted_by = db.Column(db.Integer, db.ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True)
    boost_type = db.Column(db.String(10), nullable=False, default=BOOST_TYPE_USER)
    duration_days = db.Column(db.Integer, nullable=False)
    expired_at = db.Column(db.DateTime(timezone=True), nullable=False)
    payment_method = db.Column(db.String(32), nullable=True)
    transaction_id = db.Column(db.String(255), nullable=True)

    listing = db.relationship("Listing", back_populates="boost_history")

    __table_args__ = (
        CheckConstraint("boost_type IN ('user','admin')", name="ck_boost_history_type_valid"),
    )

    def to_dict(self):
        return dict(
            boostedAt=self.boosted_at.isoformat() if self.boosted_at else None,
            boostedBy=self.boosted_by,
            boostType=self.boost_type,
            duration=self.duration_days,
            expiredAt=self.expired_at.isoformat() if self.expired_at else None,
            paymentMethod=self.payment_method,
            transactionId=self.transaction_id,
        )
