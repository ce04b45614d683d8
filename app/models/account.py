from decimal import Decimal
from flask_login import UserMixin
from sqlalchemy import func, CheckConstraint
from app.extensions import db, login_manager

ROLE_USER = "user"
ROLE_DEALER = "dealer"
ROLE_ADMIN = "admin"
ROLE_CHOICES = (ROLE_USER, ROLE_DEALER, ROLE_ADMIN)


class Account(db.Model, UserMixin):
    __tablename__ = "accounts"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True)
    role = db.Column(db.String(20), nullable=False, default=ROLE_USER, server_default=ROLE_USER)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Subscription snapshot. "Active" is derived at read time from
    # subscription_is_active + subscription_end (see app.billing.state).
    subscription_plan = db.Column(db.String(64), nullable=False, default="free", server_default="free")
    subscription_start = db.Column(db.DateTime(timezone=True), nullable=True)
    subscription_end = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    subscription_is_active = db.Column(db.Boolean, nullable=False, default=False)
    subscription_auto_renew = db.Column(db.Boolean, nullable=False, default=False)

    # Only ever changed with relative UPDATEs (app.services.credits)
    boost_credits = db.Column(db.Integer, nullable=False, default=0, server_default=db.text("0"))
    total_spent = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"), server_default=db.text("0"))

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    payments = db.relationship(
        "PaymentRecord",
        back_populates="account",
        lazy="dynamic",
        order_by="PaymentRecord.id",
    )

    __table_args__ = (
        CheckConstraint("boost_credits >= 0", name="ck_accounts_boost_credits_non_negative"),
        CheckConstraint("total_spent >= 0", name="ck_accounts_total_spent_non_negative"),
        CheckConstraint("role IN ('user','dealer','admin')", name="ck_accounts_role_valid"),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def get_id(self) -> str:
        return str(self.id)

    def __repr__(self) -> str:
        return f"<Account id={self.id} role={self.role!r} plan={self.subscription_plan!r} credits={self.boost_credits}>"


@login_manager.user_loader
def load_account(account_id: str):
    try:
        return db.session.get(Account, int(account_id))
    except Exception:
        return None
