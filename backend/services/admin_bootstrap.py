"""
Idempotent first-admin bootstrap from env.
- Reads BOOTSTRAP_ADMIN_EMAIL, BOOTSTRAP_ADMIN_PASSWORD and optional BOOTSTRAP_ADMIN_NAME.
- Does nothing when any user already exists, so a populated database is never touched.
Never logs or returns plaintext passwords.
"""
import os
import logging
from database import database
from models import User, UserRole, AuditAction, to_document
from utils.audit import create_audit_log
from auth import hash_password, validate_password_strength

logger = logging.getLogger(__name__)

BOOTSTRAP_ADMIN_EMAIL_KEY = "BOOTSTRAP_ADMIN_EMAIL"
BOOTSTRAP_ADMIN_PASSWORD_KEY = "BOOTSTRAP_ADMIN_PASSWORD"
BOOTSTRAP_ADMIN_NAME_KEY = "BOOTSTRAP_ADMIN_NAME"


async def run_bootstrap_admin() -> dict:
    """
    Create the first ADMIN when the users collection is empty.
    Returns dict with keys: action (str), user_id (str|None), message (str).
    """
    email = os.environ.get(BOOTSTRAP_ADMIN_EMAIL_KEY, "").strip().lower()
    password = os.environ.get(BOOTSTRAP_ADMIN_PASSWORD_KEY, "").strip()
    if not email or not password:
        return {"action": "skipped", "user_id": None, "message": "BOOTSTRAP_ADMIN_EMAIL / BOOTSTRAP_ADMIN_PASSWORD not set"}

    ok, message = validate_password_strength(password)
    if not ok:
        logger.warning("Bootstrap admin: weak password rejected (%s)", message)
        return {"action": "skipped", "user_id": None, "message": message}

    db = database.get_db()
    if await db.users.count_documents({}) > 0:
        logger.info("Bootstrap admin: users already exist, nothing to do")
        return {"action": "already_exists", "user_id": None, "message": "Users already exist"}

    name = os.environ.get(BOOTSTRAP_ADMIN_NAME_KEY, "").strip() or "Administrator"
    admin = User(
        name=name,
        email=email,
        password_hash=hash_password(password),
        role=UserRole.ADMIN,
    )
    await db.users.insert_one(to_document(admin))
    await create_audit_log(
        action=AuditAction.ADMIN_BOOTSTRAPPED,
        actor={"user_id": admin.user_id, "role": UserRole.ADMIN.value},
        resource_type="user",
        resource_id=admin.user_id,
        metadata={"email": email, "method": "bootstrap_env"},
    )
    logger.info("Bootstrap admin: created (email=%s)", email)
    return {"action": "created", "user_id": admin.user_id, "message": "Admin created from env"}
