"""Portal token model (single_use strategy only).

Stores a SHA-256 hash of each issued magic-link token so an exchange can
be checked-and-consumed atomically. The stateless strategy never writes
here.
"""

import uuid
from datetime import datetime, timezone

from storefront.extensions import db


class PortalToken(db.Model):
    __tablename__ = "portal_tokens"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    token_hash = db.Column(
        db.String(64), unique=True, nullable=False
    )  # sha256 hex of the full token string
    email = db.Column(db.String(255), nullable=False)
    stripe_customer_id = db.Column(db.String(255), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    used_at = db.Column(
        db.DateTime(timezone=True), nullable=True
    )  # set on first successful exchange
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    @property
    def is_expired(self):
        """Check if the token has expired."""
        now = datetime.now(timezone.utc)
        expires = self.expires_at
        # SQLite returns naive datetimes; Postgres returns aware ones.
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return now > expires

    @property
    def is_used(self):
        return self.used_at is not None

    def __repr__(self):
        return f"<PortalToken {self.token_hash[:8]}... email={self.email}>"
