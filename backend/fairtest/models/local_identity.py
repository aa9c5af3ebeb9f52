"""
LocalIdentity model - device-scoped key-value rows for exam identities.

Rows hold the JSON record {uid, uidHash, finalHash, examId, timestamp}
under the key "<prefix><examId>". This table is never replicated to the
ledger and never holds a wallet address.
"""

from datetime import datetime, timezone
from sqlalchemy import Column, Text, DateTime, String
from fairtest.database import Base


class LocalIdentity(Base):
    """SQLAlchemy model for the local_identities table."""
    __tablename__ = "local_identities"

    key = Column(String(255), primary_key=True,
                 doc="Storage key, e.g. fairtest_uid_<examId>")
    value = Column(Text, nullable=False,
                   doc="Serialized identity record as JSON")
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc),
                        onupdate=lambda: datetime.now(timezone.utc),
                        doc="Last write time")

    def __repr__(self):
        return f"<LocalIdentity(key='{self.key}')>"
