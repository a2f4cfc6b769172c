"""
Firebase Auth user provisioning via the Admin SDK.

The SDK is synchronous; route handlers call these helpers through
`run_in_threadpool`. SDK errors are re-raised as IdentityProviderError so
the app's error handler renders them in the standard envelope.
"""

import logging
import secrets
from typing import Optional

import firebase_admin
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials
from firebase_admin import exceptions as firebase_exceptions

from .core.config import get_settings
from .core.errors import IdentityProviderError

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


def get_firebase_app() -> firebase_admin.App:
    """Initialize the default Firebase app once."""
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    settings = get_settings()
    options = {"projectId": settings.firebase_project_id} if settings.firebase_project_id else None
    if settings.firebase_credentials_path:
        cred = credentials.Certificate(settings.firebase_credentials_path)
        logger.info("Firebase Admin initialized from service account file")
    else:
        cred = credentials.ApplicationDefault()
        logger.info("Firebase Admin initialized with application default credentials")
    return firebase_admin.initialize_app(cred, options)


def _provider_error(action: str, e: firebase_exceptions.FirebaseError) -> IdentityProviderError:
    if isinstance(e, firebase_auth.UserNotFoundError):
        logger.warning(f"Firebase {action}: user not found")
        return IdentityProviderError("Auth user not found", provider_code=e.code, status_code=404)
    logger.error(f"Firebase {action} failed: {e}")
    return IdentityProviderError(f"Failed to {action}: {e}", provider_code=e.code)


def create_or_update_staff_user(
    email: str,
    display_name: Optional[str] = None,
    password: Optional[str] = None,
) -> str:
    """
    Ensure an enabled auth user exists for `email` and return its uid.

    Existing users get their display name (and password, when given)
    updated; new users get a random password when none (or one shorter
    than six characters) is given. Refresh tokens are revoked either way so
    old sessions pick up the new role.
    """
    email = email.strip().lower()
    if password and len(password) < MIN_PASSWORD_LENGTH:
        password = None

    app = get_firebase_app()
    try:
        try:
            user = firebase_auth.get_user_by_email(email, app=app)
        except firebase_auth.UserNotFoundError:
            user = None

        if user is not None:
            updates = {"disabled": False}
            if display_name:
                updates["display_name"] = display_name
            if password:
                updates["password"] = password
            firebase_auth.update_user(user.uid, app=app, **updates)
            uid = user.uid
            logger.info(f"Updated existing auth user {uid}")
        else:
            user = firebase_auth.create_user(
                email=email,
                password=password or secrets.token_urlsafe(18),
                display_name=display_name,
                app=app,
            )
            uid = user.uid
            logger.info(f"Created auth user {uid}")

        firebase_auth.revoke_refresh_tokens(uid, app=app)
    except firebase_exceptions.FirebaseError as e:
        raise _provider_error("create staff auth user", e) from e
    return uid


def get_uid_by_email(email: str) -> Optional[str]:
    app = get_firebase_app()
    try:
        return firebase_auth.get_user_by_email(email.strip().lower(), app=app).uid
    except firebase_auth.UserNotFoundError:
        return None
    except firebase_exceptions.FirebaseError as e:
        raise _provider_error("look up auth user", e) from e


def create_owner_user(email: str, password: str, display_name: Optional[str] = None) -> str:
    app = get_firebase_app()
    try:
        user = firebase_auth.create_user(email=email, password=password, display_name=display_name, app=app)
    except firebase_exceptions.FirebaseError as e:
        raise _provider_error("create salon owner", e) from e
    logger.info(f"Created salon owner auth user {user.uid}")
    return user.uid


def set_user_disabled(uid: str, disabled: bool) -> None:
    app = get_firebase_app()
    try:
        firebase_auth.update_user(uid, disabled=disabled, app=app)
        if disabled:
            firebase_auth.revoke_refresh_tokens(uid, app=app)
    except firebase_exceptions.FirebaseError as e:
        raise _provider_error("update auth user", e) from e
    logger.info(f"Auth user {uid} {'disabled' if disabled else 'enabled'}")


def delete_user(uid: Optional[str] = None, email: Optional[str] = None) -> Optional[str]:
    """
    Delete an auth user by uid, or by email when no uid is given.

    Returns the deleted uid, or None when no user matches the email.
    """
    if not uid and not email:
        raise IdentityProviderError("uid or email is required")

    app = get_firebase_app()
    try:
        if not uid:
            try:
                uid = firebase_auth.get_user_by_email(email.strip().lower(), app=app).uid
            except firebase_auth.UserNotFoundError:
                logger.info("No auth user found for deletion by email")
                return None
        firebase_auth.delete_user(uid, app=app)
    except firebase_exceptions.FirebaseError as e:
        raise _provider_error("delete auth user", e) from e
    logger.info(f"Deleted auth user {uid}")
    return uid
