from . import db
from datetime import datetime, timezone


class Profile(db.Model):
    """Display data for a user. Owned by the identity provider, read-only here."""

    __tablename__ = "profiles"

    user_id = db.Column(db.String(36), primary_key=True)
    full_name = db.Column(db.String(120), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    avatar_url = db.Column(db.String(500), nullable=True)
    role = db.Column(db.String(20), nullable=False, default="talent")
    company_name = db.Column(db.String(120), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def first_name(self) -> str:
        if not self.full_name:
            return ""
        return self.full_name.split()[0]

    @property
    def last_name(self) -> str:
        if not self.full_name:
            return ""
        return " ".join(self.full_name.split()[1:])

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "full_name": self.full_name,
            "email": self.email,
            "avatar_url": self.avatar_url,
            "role": self.role,
            "company_name": self.company_name,
        }
