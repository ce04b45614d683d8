from sqlalchemy import func, CheckConstraint
from sqlalchemy.dialects.postgresql import JSONB
from app.extensions import db

PURPOSE_BOOST = "boost"
PURPOSE_SUBSCRIPTION = "subscription"

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


class PaymentRecord(db.Model):
    """One line of an account's payment history. Rows are only ever inserted."""
    __tablename__ = "payment_records"

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(
        db.Integer,
        db.ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    method = db.Column(db.String(32), nullable=True)  # stripe|admin_charge|card
    # Stripe checkout session id for gateway payments
    transaction_id = db.Column(db.String(255), nullable=True, index=True)
    purpose = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=STATUS_PENDING)
    meta = db.Column(db.JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    account = db.relationship("Account", back_populates="payments")

    __table_args__ = (
        CheckConstraint("purpose IN ('boost','subscription')", name="ck_payment_records_purpose_valid"),
        CheckConstraint("status IN ('pending','completed','failed')", name="ck_payment_records_status_valid"),
        db.Index("ix_payment_records_txn_status", "transaction_id", "status"),
    )

    def to_dict(self):
        return dict(
            id=self.id,
            amount=str(self.amount),
            currency=self.currency,
            method=self.method,
            transactionId=self.transaction_id,
            purpose=self.purpose,
            status=self.status,
            metadata=self.meta or {},
            createdAt=self.created_at.isoformat() if self.created_at else None,
        )

    def __repr__(self) -> str:
        return f"<PaymentRecord id={self.id} account_id={self.account_id} {self.purpose}/{self.status} {self.amount}>"
