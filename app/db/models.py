# app/db/models.py
from __future__ import annotations

import enum
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import (
    String,
    Text,
    Integer,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    func,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base

# ==== Enums (python + sqlalchemy) ====


class RoleEnum(str, enum.Enum):
    employee = "EMPLOYEE"
    admin = "ADMIN"
    technician = "TECHNICIAN"


class PriorityEnum(str, enum.Enum):
    low = "Low"
    medium = "Medium"
    high = "High"


class TicketStatusEnum(str, enum.Enum):
    not_assigned = "NOT_ASSIGNED"
    assigned = "ASSIGNED"
    pending = "PENDING"       # technician acknowledged, not started yet
    inprocess = "INPROCESS"
    complete = "COMPLETE"
    rejected = "REJECTED"


def _values(enum_cls):
    return [m.value for m in enum_cls]


# ==== Mixins ====


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


# ==== Models ====


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    display_name: Mapped[str] = mapped_column(String(255))
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    # employees are looked up but never log in
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[RoleEnum] = mapped_column(
        Enum(RoleEnum, name="role_enum", values_callable=_values),
        default=RoleEnum.employee,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    emp_id: Mapped[Optional[str]] = mapped_column(String(32), unique=True, nullable=True)
    department: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    # personal outbound mail identity (optional)
    mail_username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    mail_password: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    tickets_addressed: Mapped[List["Ticket"]] = relationship(
        back_populates="addressee",
        foreign_keys="Ticket.addressee_id",
    )
    tickets_assigned: Mapped[List["Ticket"]] = relationship(
        back_populates="assignee",
        foreign_keys="Ticket.assignee_id",
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username} role={self.role}>"


class Ticket(TimestampMixin, Base):
    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # requester as submitted on the form
    requester_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    emp_id: Mapped[str] = mapped_column(String(32))
    username: Mapped[str] = mapped_column(String(64))
    full_name: Mapped[str] = mapped_column(String(255))
    department: Mapped[str] = mapped_column(String(128))
    system_ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    issue_text: Mapped[str] = mapped_column(Text)
    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    addressee_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
    )
    assignee_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    priority: Mapped[Optional[PriorityEnum]] = mapped_column(
        Enum(PriorityEnum, name="priority_enum", values_callable=_values),
        nullable=True,
    )
    status: Mapped[TicketStatusEnum] = mapped_column(
        Enum(TicketStatusEnum, name="ticket_status_enum", values_callable=_values),
        default=TicketStatusEnum.not_assigned,
        nullable=False,
    )

    admin_remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    fixed_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reject_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # relationships
    requester: Mapped[Optional["User"]] = relationship(
        foreign_keys=[requester_id],
        lazy="joined",
    )
    addressee: Mapped["User"] = relationship(
        back_populates="tickets_addressed",
        foreign_keys=[addressee_id],
        lazy="joined",
    )
    assignee: Mapped[Optional["User"]] = relationship(
        back_populates="tickets_assigned",
        foreign_keys=[assignee_id],
        lazy="joined",
    )

    __table_args__ = (
        Index("ix_tickets_addressee_status", "addressee_id", "status"),
        Index("ix_tickets_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Ticket id={self.id} status={self.status} priority={self.priority}>"
