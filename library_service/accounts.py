import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from .errors import BadPassword, Conflict, InvalidInput, UserNotFound
from .models import User
from .security import hash_password, verify_password

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes and refuses anything longer
MAX_PASSWORD_BYTES = 72


def _check_password_length(password):
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise InvalidInput(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")


def _find_by_username(session, username):
    return session.execute(
        select(User).where(User.username == username)
    ).scalar_one_or_none()


def get_user(session, user_id):
    user = session.get(User, user_id)
    if not user:
        raise UserNotFound()
    return user


def register(session, username, password, rounds=12):
    """
    Create a user with an empty borrowed list.

    The lookup gives a friendly error for the common case; the unique
    constraint on ``username`` settles two signups racing for the same name.
    """
    username = (username or "").strip()
    if not username or not password:
        raise InvalidInput("Username and password are required")
    _check_password_length(password)

    if _find_by_username(session, username):
        raise Conflict("Username already exists")

    user = User(username=username, password_hash=hash_password(password, rounds))
    session.add(user)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise Conflict("Username already exists")

    logger.info("Registered user %s (id=%s)", username, user.id)
    return user


def authenticate(session, username, password):
    user = _find_by_username(session, (username or "").strip())
    if not user:
        logger.warning("Login failed: unknown user %r", username)
        raise UserNotFound("No account with that username")

    if not verify_password(password or "", user.password_hash):
        logger.warning("Login failed: bad password for %r", username)
        raise BadPassword("Incorrect username or password")

    logger.info("User %s logged in", user.username)
    return user


def change_password(session, user_id, current_password, new_password, rounds=12):
    user = get_user(session, user_id)

    if not verify_password(current_password or "", user.password_hash):
        raise BadPassword("Current password is incorrect")
    if not new_password:
        raise InvalidInput("New password must not be empty")
    _check_password_length(new_password)

    user.password_hash = hash_password(new_password, rounds)
    session.commit()
    logger.info("User %s changed password", user.username)
