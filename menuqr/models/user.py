from flask_login import UserMixin
from sqlalchemy import func
from menuqr.extensions import db, login_manager

ACCOUNT_ACTIVE = "active"
ACCOUNT_INACTIVE = "inactive"

class User(db.Model, UserMixin):
    """
    Restaurant owner account: the tenant a subscription and access flag belong to.
    Rows are provisioned by the managed auth backend; ids are its opaque strings.
    """
    __tablename__ = "users"

    id = db.Column(db.String(64), primary_key=True)
    email = db.Column(db.String(255), nullable=True)

    # Mirror of the access flag, read by the dashboard
    subscription = db.Column(db.String(16), nullable=False, server_default=db.text("'inactive'"), default=ACCOUNT_INACTIVE)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    restaurants = db.relationship("Restaurant", back_populates="owner", lazy="select")

    @property
    def has_active_access(self) -> bool:
        return self.subscription == ACCOUNT_ACTIVE

    def get_id(self) -> str:
        return str(self.id)

    def __repr__(self) -> str:
        return f"<User id={self.id!r} subscription={self.subscription!r}>"

@login_manager.user_loader
def load_user(user_id: str):
    return db.session.get(User, user_id)
