"""Typed failures raised by the request workflow.

The HTTP layer maps every ``WorkflowError`` onto the standard error JSON shape
using ``status_code``/``title``/``code``; callers outside HTTP can branch on the
class or on ``code``.
"""
from __future__ import annotations


class WorkflowError(Exception):
    code = 'workflow_error'
    status_code = 400
    title = 'Bad Request'

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason

    def as_dict(self):
        return {'code': self.code, 'reason': self.reason}


class NotFound(WorkflowError):
    code = 'not_found'
    status_code = 404
    title = 'Not Found'


class InvalidTransition(WorkflowError):
    code = 'invalid_transition'
    status_code = 409
    title = 'Conflict'

    def __init__(self, reason: str, current: str = None, trigger: str = None):
        super().__init__(reason)
        self.current = current
        self.trigger = trigger


class InvalidHandler(WorkflowError):
    code = 'invalid_handler'
    status_code = 422
    title = 'Unprocessable Entity'


class NoHandlerAvailable(WorkflowError):
    code = 'no_handler_available'
    status_code = 409
    title = 'Conflict'


class Conflict(WorkflowError):
    """A concurrent writer moved the row first."""
    code = 'conflict'
    status_code = 409
    title = 'Conflict'


class ValidationError(WorkflowError):
    code = 'validation_error'
    status_code = 400
    title = 'Bad Request'


__all__ = [
    'WorkflowError', 'NotFound', 'InvalidTransition', 'InvalidHandler',
    'NoHandlerAvailable', 'Conflict', 'ValidationError',
]
