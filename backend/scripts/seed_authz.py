#!/usr/bin/env python
"""Idempotent seed script for permissions, role presets and the first admin.

Usage:
    python backend/scripts/seed_authz.py               # seed normally
    python backend/scripts/seed_authz.py --show-roles  # print role -> permission counts (after ensuring seed)
    python backend/scripts/seed_authz.py --dry-run     # run logic then rollback (no DB changes)
"""
from __future__ import annotations
import os, sys, argparse, textwrap
from sqlalchemy import select, text

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from casedesk import create_app, get_db  # type: ignore
from casedesk.models.authz import Permission, Role, RolePermission, User, UserRole
from casedesk.constants.permissions import SERVICE_ACTIONS, ROLE_PRESETS, build_all_permission_codes


def ensure_permissions(session):
    existing = {p.code for p in session.execute(select(Permission)).scalars().all()}
    created = 0
    for svc, actions in SERVICE_ACTIONS.items():
        for act in actions:
            code = f"{svc}.{act}"
            if code not in existing:
                session.add(Permission(code=code, service=svc, action=act, description=code.replace('.', ' - ')))
                created += 1
    session.flush()
    return created


def ensure_roles(session):
    existing_roles = {r.name: r for r in session.execute(select(Role)).scalars().all()}
    created = 0
    for role_name in ROLE_PRESETS:
        if role_name not in existing_roles:
            role = Role(name=role_name, is_system=True)
            session.add(role)
            existing_roles[role_name] = role
            created += 1
    session.flush()

    all_codes = set(build_all_permission_codes())
    perms_map = {p.code: p for p in session.execute(select(Permission)).scalars()}
    for role_name, codes in ROLE_PRESETS.items():
        role = existing_roles[role_name]
        desired = all_codes if '*' in codes else set(codes)
        current = {rp.permission.code for rp in role.permissions}
        for code in sorted(desired - current):
            if code not in perms_map:
                print(f"[WARN] Missing permission referenced by role {role_name}: {code}")
                continue
            session.add(RolePermission(role=role, permission=perms_map[code]))
    return created


def ensure_initial_admin(session):
    admin_role = session.execute(select(Role).where(Role.name == 'admin')).scalar_one_or_none()
    if not admin_role:
        print('[WARN] admin role missing; skipping admin user creation')
        return None
    username = os.getenv('SEED_ADMIN_USERNAME', 'admin')
    user = session.execute(select(User).where(User.username == username)).scalar_one_or_none()
    if not user:
        user = User(username=username, full_name='Administrator', password_hash='')
        user.set_password(os.getenv('SEED_ADMIN_PASSWORD', 'ChangeMe123!'))
        session.add(user)
        session.flush()
        session.add(UserRole(user_id=user.id, role_id=admin_role.id))
        print(f"[INFO] Created initial admin user {username} with temporary password.")
    return user


def print_role_summary(session):
    rows = []
    for role in session.execute(select(Role)).scalars().all():
        perms = sorted(rp.permission.code for rp in role.permissions)
        rows.append((role.name, len(perms), perms[:6]))
    if not rows:
        print("[INFO] No roles present.")
        return
    name_w = max(len(r[0]) for r in rows)
    print(f"{'Role'.ljust(name_w)} | Count | Sample (up to 6)")
    print('-' * (name_w + 40))
    for name, cnt, sample in rows:
        print(f"{name.ljust(name_w)} | {str(cnt).rjust(5)} | {', '.join(sample)}")


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Seed case desk permissions & roles",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed normally: seed_authz.py\n  dry run: seed_authz.py --dry-run\n  show roles: seed_authz.py --show-roles\n""")
    )
    p.add_argument('--show-roles', action='store_true', help='Print role permission counts after seeding')
    p.add_argument('--dry-run', action='store_true', help='Rollback after operations (no commit)')
    return p.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    app = create_app({'SCHEDULER_ENABLED': False})
    with app.app_context():
        session = get_db()
        try:
            session.execute(text('SELECT 1 FROM permissions LIMIT 1'))
        except Exception:
            # bootstrap without migrations; prefer `alembic upgrade head`
            session.rollback()
            from casedesk.models.authz import Base
            import casedesk.models.service_request, casedesk.models.routing, casedesk.models.audit  # noqa: F401
            Base.metadata.create_all(session.get_bind())
        try:
            created_p = ensure_permissions(session)
            created_r = ensure_roles(session)
            ensure_initial_admin(session)
            if args.dry_run:
                session.rollback()
                print(f"[DRY-RUN] (rolled back) Permissions would create: {created_p}, Roles would create: {created_r}")
            else:
                session.commit()
                print(f"[DONE] Permissions created: {created_p}, Roles created: {created_r}")
            if args.show_roles:
                print('\nRole Permission Summary:')
                print_role_summary(session)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

if __name__ == '__main__':
    main()
