"""Administrator session kept in local persisted state.

Keys written: ``currentUser`` (JSON user record), ``isAuthenticated``
(``"true"``) and, when asked to, ``rememberMe``.
"""

import logging
import secrets
from typing import Optional

from pydantic import ValidationError

from ..cache.local_state import LocalStateStore
from ..models.records import User
from ..store.rest import Filter, RemoteStore
from ..utils.error_handling import AuthenticationError, RemoteStoreError

logger = logging.getLogger(__name__)

CURRENT_USER_KEY = "currentUser"
AUTHENTICATED_KEY = "isAuthenticated"
REMEMBER_ME_KEY = "rememberMe"

MIN_PASSWORD_LENGTH = 6

USER_SELECT = "*, rol:rol_id(nombre, fecha_creacion)"


class SessionManager:
    """Login, logout and the admin guard."""

    def __init__(self, store: Optional[RemoteStore], state: LocalStateStore):
        """Initialize session manager.

        Args:
            store: REST gateway used by login (may be None for read-only checks)
            state: Local persisted key-value state
        """
        self.store = store
        self.state = state

    def login(self, email: str, password: str, remember: bool = False) -> User:
        """Check credentials and persist the session.

        Args:
            email: User email
            password: Password as typed
            remember: Also store the ``rememberMe`` flag

        Returns:
            The logged in administrator

        Raises:
            AuthenticationError: Bad credentials or not an administrator
        """
        email = email.strip()
        if not email or len(password) < MIN_PASSWORD_LENGTH:
            raise AuthenticationError("Enter an email and a password of at least 6 characters")
        if self.store is None:
            raise AuthenticationError("No remote store configured")

        try:
            row = self.store.select_one("usuario", USER_SELECT, [Filter("email", "eq", email)])
        except RemoteStoreError as e:
            logger.error("Login lookup failed: %s", e.message)
            raise AuthenticationError(f"Connection error: {e.message}") from e

        if row is None or not secrets.compare_digest(
            str(row.get("password_hash") or ""), password
        ):
            raise AuthenticationError("Incorrect credentials, try again")

        user = User.model_validate(row)
        if not user.is_admin:
            raise AuthenticationError("Only administrators can access the system")

        self.state.set_json(
            CURRENT_USER_KEY, user.model_dump(mode="json", exclude={"password_hash"})
        )
        self.state.set_item(AUTHENTICATED_KEY, "true")
        if remember:
            self.state.set_item(REMEMBER_ME_KEY, "true")
        else:
            self.state.remove_item(REMEMBER_ME_KEY)
        logger.info("Logged in as %s", user.email)
        return user

    def logout(self) -> None:
        """Forget the current session."""
        for key in (CURRENT_USER_KEY, AUTHENTICATED_KEY, REMEMBER_ME_KEY):
            self.state.remove_item(key)

    def is_authenticated(self) -> bool:
        return self.state.get_item(AUTHENTICATED_KEY) == "true"

    def current_user(self) -> Optional[User]:
        """The stored user, or None when missing or unreadable."""
        data = self.state.get_json(CURRENT_USER_KEY)
        if not isinstance(data, dict):
            return None
        try:
            return User.model_validate(data)
        except ValidationError:
            logger.warning("Stored session user is unreadable, ignoring it")
            return None

    def is_admin(self) -> bool:
        """Whether an authenticated administrator session exists."""
        if not self.is_authenticated():
            return False
        user = self.current_user()
        return user is not None and user.is_admin

    def require_admin(self) -> User:
        """Return the administrator of the session.

        Raises:
            AuthenticationError: No session, or the user is not an administrator
        """
        if not self.is_authenticated():
            raise AuthenticationError("Log in first with `cine-admin login EMAIL`")
        user = self.current_user()
        if user is None or not user.is_admin:
            raise AuthenticationError("Only administrators can access the system")
        return user
