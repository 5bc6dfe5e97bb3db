import enum

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum, Index, text
from sqlalchemy.sql import func
from placement_auth.services.db import Base


class OTPPurpose(str, enum.Enum):
    VERIFY_EMAIL = "VERIFY_EMAIL"
    RESET_PASSWORD = "RESET_PASSWORD"


class OneTimeCode(Base):
    """
    A six-digit code proving control of an email address for one purpose.

    Rows are keyed by email rather than user, since a registration code exists
    before its account does. Used and expired rows are kept for audit. Once a
    row leaves the live state it is marked ``is_used`` and reads as one of:

    - verified: ``used_at`` set
    - superseded while still live by a newer code: ``superseded_at`` set
    - expired unused, retired when a newer code was issued: neither set
    """
    __tablename__ = "one_time_codes"
    __table_args__ = (
        # At most one unused row per (email, purpose)
        Index(
            "uq_one_time_codes_live",
            "email", "purpose",
            unique=True,
            postgresql_where=text("NOT is_used"),
            sqlite_where=text("NOT is_used"),
        ),
        Index("ix_one_time_codes_lookup", "email", "purpose", "code"),
    )

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False, index=True)
    code = Column(String(6), nullable=False)
    purpose = Column(Enum(OTPPurpose, name="otp_purpose"), nullable=False)
    is_used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    superseded_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<OneTimeCode(email='{self.email}', purpose={self.purpose}, used={self.is_used})>"
