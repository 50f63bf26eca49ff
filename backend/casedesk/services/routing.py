"""Routing rule registry and the handler directory built on top of it.

RoutingRule is the single source of truth for "who may handle what"; the
queue-handler operations are thin aliases over the same eligible-user rows.
"""
from __future__ import annotations
import logging
from collections import abc
from typing import Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from casedesk.errors import NotFound, ValidationError
from casedesk.models.routing import RoutingRule
from casedesk.models.service_request import ServiceType
from casedesk.repositories.routing_rules import RoutingRuleRepository
from casedesk.utils.validation import validate_choice

logger = logging.getLogger(__name__)


def rule_json(rule: RoutingRule) -> dict:
    return {
        'id': rule.id,
        'service_type': rule.service_type.value,
        'is_active': rule.is_active,
        'auto_assign': rule.auto_assign,
        'assigned_users': rule.assigned_users,
    }


def handler_json(row) -> dict:
    return {
        'id': row.id,
        'service_type': row.service_type.value,
        'user_id': row.user_id,
        'username': row.user.username if row.user else None,
        'full_name': row.user.full_name if row.user else None,
    }


class RoutingRuleRegistry:
    def __init__(self, session: Session, repo: Optional[RoutingRuleRepository] = None):
        self.session = session
        self.repo = repo or RoutingRuleRepository(session)

    def get(self, service_type) -> RoutingRule:
        st = validate_choice(service_type, ServiceType, 'service_type')
        rule = self.repo.get(st)
        if rule is None:
            raise NotFound(f'Routing rule for {st.value} not found')
        return rule

    def upsert(self, service_type, is_active: bool, auto_assign: bool, assigned_users: Iterable[int]) -> RoutingRule:
        st = validate_choice(service_type, ServiceType, 'service_type')
        user_ids = self._validate_user_ids(assigned_users)
        try:
            rule = self.repo.get(st)
            if rule is None:
                rule = self.repo.insert(st, bool(is_active), bool(auto_assign))
            else:
                rule.is_active = bool(is_active)
                rule.auto_assign = bool(auto_assign)
            self.repo.replace_users(rule, user_ids)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info('routing rule saved for %s', st.value,
                    extra={'service_type': st.value, 'assigned_users': sorted(user_ids)})
        return self.repo.get(st)

    def delete(self, service_type):
        st = validate_choice(service_type, ServiceType, 'service_type')
        rule = self.repo.get(st)
        if rule is None:
            raise NotFound(f'Routing rule for {st.value} not found')
        try:
            self.repo.delete(rule)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info('routing rule deleted for %s', st.value)

    def list_with_assigned_users(self) -> List[RoutingRule]:
        return list(self.repo.list_all())

    # --- handler directory (legacy queue handlers) ---
    def list_handlers(self, service_type=None):
        st = validate_choice(service_type, ServiceType, 'service_type') if service_type is not None else None
        return self.repo.members(st)

    def handlers_for(self, service_type):
        return self.list_handlers(validate_choice(service_type, ServiceType, 'service_type'))

    def add_handler(self, service_type, user_id: int):
        """Idempotently make user_id eligible for service_type, creating a manual-only rule if needed."""
        st = validate_choice(service_type, ServiceType, 'service_type')
        user = self.repo.get_user(user_id)
        if user is None:
            raise NotFound(f'User {user_id} not found')
        try:
            existing = self.repo.find_member(st, user_id)
            if existing is not None:
                return existing
            if self.repo.get(st) is None:
                self.repo.insert(st, is_active=True, auto_assign=False)
            row = self.repo.add_member(st, user_id)
            self.session.commit()
        except IntegrityError:
            # lost a race to add the same pair
            self.session.rollback()
            return self.repo.find_member(st, user_id)
        except Exception:
            self.session.rollback()
            raise
        return row

    def remove_handler(self, service_type, user_id: int):
        st = validate_choice(service_type, ServiceType, 'service_type')
        row = self.repo.find_member(st, user_id)
        if row is None:
            raise NotFound(f'User {user_id} is not a handler for {st.value}')
        try:
            self.repo.remove_member(row)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def _validate_user_ids(self, assigned_users) -> set:
        if assigned_users is None:
            return set()
        if isinstance(assigned_users, (str, bytes)) or not isinstance(assigned_users, abc.Iterable):
            raise ValidationError('assigned_users must be a list of user ids')
        ids = set()
        for raw in assigned_users:
            if isinstance(raw, bool) or not isinstance(raw, int):
                raise ValidationError('assigned_users must be a list of user ids')
            ids.add(raw)
        found = {u.id for u in self.repo.users_by_ids(ids)}
        missing = ids - found
        if missing:
            raise ValidationError(f'Unknown user ids: {sorted(missing)}')
        return ids

__all__ = ['RoutingRuleRegistry', 'rule_json', 'handler_json']
