from flask import Blueprint, request, abort
from flask_jwt_extended import create_access_token, jwt_required, get_jwt_identity
from casedesk.models.authz import User, Role, UserRole
from casedesk.models.audit import AuditLog
from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError
from casedesk import get_db
from casedesk.errors import ValidationError, NotFound
from casedesk.services.policy import compute_effective_permissions
from casedesk.utils.listing import pagination_args, build_list_payload
from casedesk.utils.timeutil import isoformat
from casedesk.utils.validation import require_fields
from casedesk.decorators.audit import audit_log
from casedesk.decorators.auth import require_permissions

iam_bp = Blueprint('iam', __name__)

USER_PATCHABLE = ('full_name', 'email', 'department', 'is_active')


def _user_json(u: User, roles=None):
    body = {
        'id': u.id,
        'username': u.username,
        'full_name': u.full_name,
        'email': u.email,
        'department': u.department,
        'is_active': u.is_active,
        'created_at': isoformat(u.created_at),
    }
    if roles is not None:
        body['roles'] = roles
    return body


def _check_flags(data: dict):
    if 'is_active' in data and not isinstance(data['is_active'], bool):
        raise ValidationError('is_active must be boolean')


def _role_names(session, user_id: int):
    return sorted(session.execute(
        select(Role.name).join(UserRole, UserRole.role_id == Role.id).where(UserRole.user_id == user_id)
    ).scalars())


def _set_role(session, user: User, role_name: str):
    role = session.execute(select(Role).where(Role.name == role_name)).scalar_one_or_none()
    if role is None:
        raise ValidationError(f'Unknown role {role_name}')
    session.execute(delete(UserRole).where(UserRole.user_id == user.id))
    session.add(UserRole(user_id=user.id, role_id=role.id))


@iam_bp.post('/auth/login')
def login():
    data = request.json or {}
    username = data.get('username'); password = data.get('password')
    if not username or not password:
        abort(400, description='username & password required')
    session = get_db()
    user = session.execute(select(User).where(User.username == username)).scalar_one_or_none()
    if not user or not user.is_active or not user.verify_password(password):
        abort(401, description='invalid credentials')
    eff = compute_effective_permissions(user.id, session)
    claims = {
        'roles': eff['roles'],
        'perms': eff['perms'],
    }
    # JWT identity must be a string (flask-jwt-extended v4 requirement)
    token = create_access_token(identity=str(user.id), additional_claims=claims)
    return {'access_token': token, 'user': user.display()}


@iam_bp.get('/auth/me')
@jwt_required()
def me():
    user_id = int(get_jwt_identity())
    session = get_db()
    user = session.get(User, user_id)
    if not user:
        abort(404)
    eff = compute_effective_permissions(user.id, session)
    body = _user_json(user)
    body.update(roles=eff['roles'], perms=eff['perms'])
    return body


# --- User administration ---

@iam_bp.get('/users')
@require_permissions('ADMIN.USER.MANAGE')
def list_users():
    session = get_db()
    limit, offset = pagination_args()
    q = session.query(User)
    active = request.args.get('is_active')
    if active is not None:
        q = q.filter(User.is_active == (active.lower() in ('1', 'true', 'yes')))
    total = q.count()
    rows = q.order_by(User.id.asc()).offset(offset).limit(limit).all()
    data = [_user_json(u, _role_names(session, u.id)) for u in rows]
    return build_list_payload(data, total, limit, offset)


@iam_bp.post('/users')
@require_permissions('ADMIN.USER.MANAGE')
@audit_log('USER.CREATE', entity='User', entity_id_key='id', meta_keys=['username', 'roles'])
def create_user():
    data = request.json or {}
    require_fields(data, ('username', 'full_name', 'password'))
    _check_flags(data)
    session = get_db()
    user = User(username=data['username'], full_name=data['full_name'], email=data.get('email'),
                department=data.get('department'), is_active=data.get('is_active', True))
    user.set_password(data['password'])
    try:
        session.add(user)
        session.flush()
        if data.get('role'):
            _set_role(session, user, data['role'])
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ValidationError('username or email already in use')
    except Exception:
        session.rollback()
        raise
    return _user_json(user, _role_names(session, user.id)), 201


@iam_bp.patch('/users/<int:user_id>')
@require_permissions('ADMIN.USER.MANAGE')
@audit_log('USER.UPDATE', entity='User', entity_id_key='id',
           meta_builder=lambda data, rv, a, kw: {'fields': sorted((request.json or {}).keys())})
def update_user(user_id: int):
    session = get_db()
    user = session.get(User, user_id)
    if not user:
        raise NotFound(f'User {user_id} not found')
    data = request.json or {}
    unknown = set(data) - set(USER_PATCHABLE) - {'password', 'role'}
    if unknown:
        raise ValidationError(f"Fields not editable: {', '.join(sorted(unknown))}")
    if 'full_name' in data and not data['full_name']:
        raise ValidationError('full_name cannot be empty')
    _check_flags(data)
    try:
        for field in USER_PATCHABLE:
            if field in data:
                setattr(user, field, data[field])
        if data.get('password'):
            user.set_password(data['password'])
        if data.get('role'):
            _set_role(session, user, data['role'])
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ValidationError('email already in use')
    except Exception:
        session.rollback()
        raise
    return _user_json(user, _role_names(session, user.id))


# --- Admin audit log ---

@iam_bp.get('/audit-logs')
@require_permissions('ADMIN.AUDIT.READ')
def list_audit_logs():
    session = get_db()
    limit, offset = pagination_args()
    q = session.query(AuditLog)
    action = request.args.get('action')
    entity = request.args.get('entity')
    if action:
        q = q.filter(AuditLog.action == action)
    if entity:
        q = q.filter(AuditLog.entity == entity)
    total = q.count()
    rows = q.order_by(AuditLog.id.desc()).offset(offset).limit(limit).all()
    data = [
        {
            'id': r.id,
            'actor_user_id': r.actor_user_id,
            'action': r.action,
            'entity': r.entity,
            'entity_id': r.entity_id,
            'meta': r.meta or {},
            'created_at': isoformat(r.created_at),
        }
        for r in rows
    ]
    return build_list_payload(data, total, limit, offset)
