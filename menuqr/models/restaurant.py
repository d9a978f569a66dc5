from sqlalchemy import func
from menuqr.extensions import db
from .user import ACCOUNT_INACTIVE

class Restaurant(db.Model):
    __tablename__ = "restaurants"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(64), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)

    # "active" => published menu is publicly servable; written only by billing reconciliation
    status = db.Column(db.String(16), nullable=False, index=True, server_default=db.text("'inactive'"), default=ACCOUNT_INACTIVE)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    owner = db.relationship("User", back_populates="restaurants")

    def __repr__(self) -> str:
        return f"<Restaurant id={self.id} user_id={self.user_id!r} status={self.status!r}>"
