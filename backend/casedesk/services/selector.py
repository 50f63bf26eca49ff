"""Handler selection for service requests.

Manual path: validate a caller-chosen handler. Automatic path: least-loaded
eligible active handler, ties broken by the lower user id so the choice is
reproducible. Failures are raised to the caller and never retried here.
"""
from __future__ import annotations
import logging
from typing import Optional

from sqlalchemy.orm import Session

from casedesk.errors import InvalidHandler, NoHandlerAvailable
from casedesk.models.authz import User
from casedesk.models.service_request import ServiceType
from casedesk.repositories.routing_rules import RoutingRuleRepository
from casedesk.repositories.service_requests import ServiceRequestRepository

logger = logging.getLogger(__name__)


class AssignmentSelector:
    def __init__(self, session: Session,
                 rules: Optional[RoutingRuleRepository] = None,
                 requests: Optional[ServiceRequestRepository] = None):
        self.rules = rules or RoutingRuleRepository(session)
        self.requests = requests or ServiceRequestRepository(session)

    def validate_handler(self, service_type: ServiceType, user_id) -> User:
        if user_id is None or isinstance(user_id, bool):
            raise InvalidHandler('Handler user id is required')
        user = self.rules.get_user(user_id)
        if user is None:
            raise InvalidHandler(f'User {user_id} does not exist')
        if not user.is_active:
            raise InvalidHandler(f'User {user_id} is inactive')
        rule = self.rules.get(service_type)
        if rule is not None and user_id not in rule.assigned_users:
            raise InvalidHandler(f'User {user_id} is not eligible to handle {service_type.value}')
        return user

    def auto_assign_enabled(self, service_type: ServiceType) -> bool:
        rule = self.rules.get(service_type)
        return bool(rule and rule.is_active and rule.auto_assign)

    def pick(self, service_type: ServiceType) -> User:
        """Least-loaded eligible active handler for service_type."""
        rule = self.rules.get(service_type)
        if rule is None or not rule.is_active:
            raise NoHandlerAvailable(f'No active routing rule for {service_type.value}')
        candidates = [u for u in self.rules.users_by_ids(rule.assigned_users) if u.is_active]
        if not candidates:
            raise NoHandlerAvailable(f'No active handler eligible for {service_type.value}')
        load = self.requests.open_counts(u.id for u in candidates)
        chosen = min(candidates, key=lambda u: (load.get(u.id, 0), u.id))
        logger.debug('selected handler %s for %s', chosen.id, service_type.value,
                     extra={'service_type': service_type.value, 'load': load})
        return chosen

    def preview(self, service_type: ServiceType) -> Optional[User]:
        try:
            return self.pick(service_type)
        except NoHandlerAvailable:
            return None

__all__ = ['AssignmentSelector']
