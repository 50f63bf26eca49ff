from __future__ import annotations
import enum
from datetime import datetime
from typing import List, Optional
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, Boolean, ForeignKey, DateTime, Enum, UniqueConstraint
from casedesk.models.authz import Base
from casedesk.utils.timeutil import utcnow


class RequestStatus(str, enum.Enum):
    NEW = 'new'
    IN_PROGRESS = 'in_progress'
    PENDING_INVESTIGATION = 'pending_investigation'
    UNABLE_TO_HANDLE = 'unable_to_handle'
    SENT_BACK = 'sent_back'
    COMPLETED = 'completed'


# Requests in these states no longer count toward a handler's load
LOAD_EXCLUDED_STATUSES = (RequestStatus.COMPLETED, RequestStatus.UNABLE_TO_HANDLE)


class ServiceType(str, enum.Enum):
    SERIAL_NUMBER = 'serial_number'
    STOLEN_PHONE_CHECK = 'stolen_phone_check'
    CALL_HISTORY = 'call_history'
    UNBLOCK_CALL = 'unblock_call'
    UNBLOCK_MOMO = 'unblock_momo'
    MONEY_REFUND = 'money_refund'
    MOMO_TRANSACTION = 'momo_transaction'
    BACKOFFICE_APPOINTMENT = 'backoffice_appointment'
    OTHER = 'other'


class ReactionType(str, enum.Enum):
    LIKE = 'like'
    DISLIKE = 'dislike'


class HistoryAction(str, enum.Enum):
    CREATED = 'created'
    STATUS_CHANGE = 'status_change'
    COMMENT_ADDED = 'comment_added'
    EDITED = 'edited'


def _enum_column(enum_cls, name):
    # store the lowercase value, not the member name
    return Enum(enum_cls, name=name, native_enum=False, length=32,
                values_callable=lambda e: [m.value for m in e], validate_strings=True)


class ServiceRequest(Base):
    __tablename__ = 'service_requests'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    reference_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    service_type: Mapped[ServiceType] = mapped_column(_enum_column(ServiceType, 'service_type'), nullable=False, index=True)
    status: Mapped[RequestStatus] = mapped_column(_enum_column(RequestStatus, 'request_status'), nullable=False, default=RequestStatus.NEW, index=True)
    priority: Mapped[Optional[str]] = mapped_column(String(16))
    full_names: Mapped[str] = mapped_column(String(255), nullable=False)
    id_passport: Mapped[Optional[str]] = mapped_column(String(64))
    primary_contact: Mapped[str] = mapped_column(String(64), nullable=False)
    secondary_contact: Mapped[Optional[str]] = mapped_column(String(64))
    details: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False, index=True)
    assigned_to: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False, index=True)

    creator = relationship('User', foreign_keys=[created_by])
    assignee = relationship('User', foreign_keys=[assigned_to])
    comments: Mapped[List['RequestComment']] = relationship(
        back_populates='request', cascade='all, delete-orphan',
        order_by='RequestComment.id',
    )
    history: Mapped[List['RequestHistoryEntry']] = relationship(
        back_populates='request', cascade='all, delete-orphan',
        order_by='RequestHistoryEntry.id',
    )

    # Opaque payload fields an editor may change
    EDITABLE_FIELDS = ('full_names', 'id_passport', 'primary_contact', 'secondary_contact', 'details', 'priority')


class RequestHistoryEntry(Base):
    """Append-only audit trail row; never updated or deleted once written."""
    __tablename__ = 'request_history'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    request_id: Mapped[int] = mapped_column(ForeignKey('service_requests.id', ondelete='CASCADE'), nullable=False, index=True)
    performed_by: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True)
    action: Mapped[HistoryAction] = mapped_column(_enum_column(HistoryAction, 'history_action'), nullable=False, index=True)
    details: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False, index=True)

    request = relationship('ServiceRequest', back_populates='history')
    performer = relationship('User')


class RequestComment(Base):
    __tablename__ = 'request_comments'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    request_id: Mapped[int] = mapped_column(ForeignKey('service_requests.id', ondelete='CASCADE'), nullable=False, index=True)
    created_by: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True)
    comment: Mapped[str] = mapped_column(Text, nullable=False)
    is_send_back_reason: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    request = relationship('ServiceRequest', back_populates='comments')
    author = relationship('User')
    reactions: Mapped[List['CommentReaction']] = relationship(
        back_populates='comment', cascade='all, delete-orphan',
        order_by='CommentReaction.id',
    )


class CommentReaction(Base):
    """One reaction per user per comment; reacting again with the same type removes it."""
    __tablename__ = 'comment_reactions'
    __table_args__ = (UniqueConstraint('comment_id', 'user_id', name='uq_comment_reaction_user'),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    comment_id: Mapped[int] = mapped_column(ForeignKey('request_comments.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    reaction_type: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    comment = relationship('RequestComment', back_populates='reactions')
