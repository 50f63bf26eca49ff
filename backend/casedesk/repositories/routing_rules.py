"""Persistence operations for routing rules and their eligible-user rows.

Like the request repository this never commits; callers wrap each operation
in one transaction so the delete-then-insert replace is never observed half
done.
"""
from __future__ import annotations
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import select, delete
from sqlalchemy.orm import Session, selectinload

from casedesk.models.authz import User
from casedesk.models.routing import RoutingRule, RoutingRuleUser
from casedesk.models.service_request import ServiceType


class RoutingRuleRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, service_type: ServiceType) -> Optional[RoutingRule]:
        return self.session.execute(
            select(RoutingRule)
            .where(RoutingRule.service_type == service_type)
            .options(selectinload(RoutingRule.members))
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def list_all(self) -> Sequence[RoutingRule]:
        return self.session.execute(
            select(RoutingRule)
            .options(selectinload(RoutingRule.members))
            .order_by(RoutingRule.service_type.asc())
            .execution_options(populate_existing=True)
        ).scalars().all()

    def insert(self, service_type: ServiceType, is_active: bool, auto_assign: bool) -> RoutingRule:
        rule = RoutingRule(service_type=service_type, is_active=is_active, auto_assign=auto_assign)
        self.session.add(rule)
        self.session.flush()
        return rule

    def replace_users(self, rule: RoutingRule, user_ids: Iterable[int]):
        # Explicit delete first: the ORM would otherwise insert before deleting and trip the unique pair.
        self.session.execute(delete(RoutingRuleUser).where(RoutingRuleUser.service_type == rule.service_type))
        self.session.flush()
        for uid in sorted(set(user_ids)):
            self.session.add(RoutingRuleUser(service_type=rule.service_type, user_id=uid))
        self.session.flush()
        self.session.expire(rule, ['members'])

    def delete(self, rule: RoutingRule):
        self.session.execute(delete(RoutingRuleUser).where(RoutingRuleUser.service_type == rule.service_type))
        self.session.execute(delete(RoutingRule).where(RoutingRule.id == rule.id))
        self.session.expunge(rule)

    # --- handler directory rows ---
    def members(self, service_type: Optional[ServiceType] = None) -> List[RoutingRuleUser]:
        stmt = select(RoutingRuleUser).options(selectinload(RoutingRuleUser.user))
        if service_type is not None:
            stmt = stmt.where(RoutingRuleUser.service_type == service_type)
        stmt = stmt.order_by(RoutingRuleUser.service_type.asc(), RoutingRuleUser.user_id.asc())
        return list(self.session.execute(stmt).scalars())

    def find_member(self, service_type: ServiceType, user_id: int) -> Optional[RoutingRuleUser]:
        return self.session.execute(
            select(RoutingRuleUser).where(RoutingRuleUser.service_type == service_type,
                                          RoutingRuleUser.user_id == user_id)
        ).scalar_one_or_none()

    def add_member(self, service_type: ServiceType, user_id: int) -> RoutingRuleUser:
        row = RoutingRuleUser(service_type=service_type, user_id=user_id)
        self.session.add(row)
        self.session.flush()
        return row

    def remove_member(self, row: RoutingRuleUser):
        self.session.delete(row)
        self.session.flush()

    # --- users ---
    def users_by_ids(self, user_ids: Iterable[int]) -> List[User]:
        ids = list(user_ids)
        if not ids:
            return []
        return list(self.session.execute(select(User).where(User.id.in_(ids))).scalars())

    def get_user(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)

__all__ = ['RoutingRuleRepository']
