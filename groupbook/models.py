"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import Column, DateTime, Index, Integer, String, Text, func

from groupbook.storage import Base


class Message(Base):
    """
    A chat-style message posted into a group.

    Table: messages
    item_id is a free hint, not a foreign key into transactions.
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message = Column(Text, nullable=False)
    sender = Column(String(255), nullable=False)
    item_id = Column(Integer, nullable=True, default=None)
    amount = Column(Integer, nullable=True, default=None)
    group_name = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (
        Index("idx_messages_group_created", "group_name", "created_at"),
        Index("idx_messages_created", "created_at"),
    )


class Transaction(Base):
    """
    An item movement recorded against a group.

    Table: transactions
    The sign of amount is up to the caller.
    """
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    item_id = Column(Integer, nullable=False)
    item = Column(String(255), nullable=False)
    user = Column(String(255), nullable=False)  # reserved word in Postgres, SQLAlchemy quotes it
    amount = Column(Integer, nullable=False)
    group_name = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (
        Index("idx_transactions_group_created", "group_name", "created_at"),
        Index("idx_transactions_item_id", "item_id"),
        Index("idx_transactions_user", "user"),
        Index("idx_transactions_created", "created_at"),
    )
