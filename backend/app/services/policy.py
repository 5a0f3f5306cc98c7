"""
Authorization guards shared by every protected operation.

Role checks and ownership checks live here instead of being re-derived in
each handler. Promotion and demotion also live here because they are the
only operations that change a role.
"""

import logging
from sqlalchemy.orm import Session
from app.core.exceptions import (
    AlreadyAdmin, Forbidden, LastAdminProtected, NotAnAdmin, NotFound, SelfDemotion,
)
from app.models.user import User, ROLE_ADMIN, ROLE_USER

logger = logging.getLogger(__name__)


def require_role(user: User, role: str) -> None:
    if user.role != role:
        raise Forbidden("Admin access required" if role == ROLE_ADMIN else "Access denied")


def require_owner_or_admin(user: User, owner_id: int) -> None:
    if user.id != owner_id and user.role != ROLE_ADMIN:
        raise Forbidden()


def require_can_view(user: User, owner_id: int, is_shared: bool) -> None:
    """Shared resources are readable by every signed-in user, private ones by their owner"""
    if not is_shared and user.id != owner_id:
        raise Forbidden()


def count_admins(db: Session) -> int:
    return db.query(User).filter(User.role == ROLE_ADMIN).count()


def _get_target(db: Session, user_id: int) -> User:
    target = db.query(User).filter(User.id == user_id).first()
    if target is None:
        raise NotFound("User not found")
    return target


def promote_to_admin(db: Session, acting: User, target_id: int) -> User:
    require_role(acting, ROLE_ADMIN)
    target = _get_target(db, target_id)
    if target.role == ROLE_ADMIN:
        raise AlreadyAdmin()

    target.role = ROLE_ADMIN
    db.commit()
    db.refresh(target)
    logger.info(f"User {target.id} promoted to admin by {acting.id}")
    return target


def check_demotion(db: Session, acting: User, target: User) -> None:
    """Raise unless `acting` may turn admin `target` into a regular user"""
    require_role(acting, ROLE_ADMIN)
    if target.id == acting.id:
        raise SelfDemotion()
    if target.role != ROLE_ADMIN:
        raise NotAnAdmin()
    if count_admins(db) <= 1:
        raise LastAdminProtected()


def demote_to_user(db: Session, acting: User, target_id: int) -> User:
    require_role(acting, ROLE_ADMIN)
    if target_id == acting.id:
        raise SelfDemotion()
    target = _get_target(db, target_id)
    check_demotion(db, acting, target)

    target.role = ROLE_USER
    db.commit()
    db.refresh(target)
    logger.info(f"Admin {target.id} demoted to user by {acting.id}")
    return target


def check_deactivation(db: Session, acting: User, target: User) -> None:
    """Admins cannot lock themselves out, nor retire the last active admin"""
    if target.id == acting.id:
        raise Forbidden("You cannot deactivate your own account")
    if target.role == ROLE_ADMIN and target.is_active:
        active_admins = db.query(User).filter(
            User.role == ROLE_ADMIN,
            User.is_active.is_(True),
        ).count()
        if active_admins <= 1:
            raise LastAdminProtected("Cannot deactivate the last active admin")
