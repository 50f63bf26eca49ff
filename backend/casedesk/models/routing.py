from __future__ import annotations
from datetime import datetime
from typing import List
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, Boolean, ForeignKey, DateTime, UniqueConstraint
from casedesk.models.authz import Base
from casedesk.models.service_request import ServiceType, _enum_column
from casedesk.utils.timeutil import utcnow


class RoutingRule(Base):
    """Per service-type eligibility and auto-assign configuration (one row per type)."""
    __tablename__ = 'routing_rules'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    service_type: Mapped[ServiceType] = mapped_column(_enum_column(ServiceType, 'routing_service_type'), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    auto_assign: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    members: Mapped[List['RoutingRuleUser']] = relationship(
        back_populates='rule', cascade='all, delete-orphan',
        order_by='RoutingRuleUser.user_id',
    )

    @property
    def assigned_users(self) -> List[int]:
        return sorted(m.user_id for m in self.members)


class RoutingRuleUser(Base):
    """One eligible handler for a service type.

    Also backs the legacy queue-handler directory: a (service_type, user_id)
    pair here is exactly a queue handler.
    """
    __tablename__ = 'routing_rule_users'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    service_type: Mapped[ServiceType] = mapped_column(
        _enum_column(ServiceType, 'routing_user_service_type'),
        ForeignKey('routing_rules.service_type', ondelete='CASCADE'),
        nullable=False, index=True,
    )
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    rule = relationship('RoutingRule', back_populates='members')
    user = relationship('User')

    __table_args__ = (UniqueConstraint('service_type', 'user_id', name='uq_routing_rule_user'),)
