"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, String, Text, func

from app.storage import Base


class User(Base):
    """
    A CRM participant, identified only by phone number.

    Table: users
    Primary Key: phone (natural key, no surrogate id)
    """
    __tablename__ = "users"

    phone = Column(String, primary_key=True)
    name = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.current_timestamp())


class Deal(Base):
    """
    A sales record moving through an externally defined pipeline.

    Table: deals
    buyer_phone and supplier_phone are free-form; only created_by is a
    declared foreign key.
    """
    __tablename__ = "deals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    amount = Column(Float, nullable=False)
    currency = Column(String, server_default="$")
    stage_index = Column(Integer, server_default="0")
    buyer_phone = Column(String, nullable=True)
    supplier_phone = Column(String, nullable=True)
    created_by = Column(String, ForeignKey("users.phone"), nullable=False)
    transfer = Column(Integer, server_default="0")
    created_at = Column(DateTime, server_default=func.current_timestamp())

    __table_args__ = (
        Index("idx_deals_created_by", "created_by"),
        {"sqlite_autoincrement": True},
    )


class Message(Base):
    """
    A chat entry attached to one deal.

    Table: messages
    Rows go away with their deal (ON DELETE CASCADE).
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    deal_id = Column(Integer, ForeignKey("deals.id", ondelete="CASCADE"), nullable=False)
    sender = Column(String, ForeignKey("users.phone"), nullable=False)
    text = Column(Text, nullable=False)
    timestamp = Column(DateTime, server_default=func.current_timestamp())
    is_read = Column(Integer, server_default="0")

    __table_args__ = (
        Index("idx_messages_deal_id", "deal_id"),
        {"sqlite_autoincrement": True},
    )
