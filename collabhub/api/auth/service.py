"""
Authentication Service

Password and federated sign-in as two separate paths. Both record LOGIN on
success and LOGIN_FAILED on failure, so failed attempts feed the
brute-force rule.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

import bcrypt

from collabhub.api.access.rbac import PermissionResolver
from collabhub.api.audit.recorder import AuditRecorder
from collabhub.api.audit.types import AuditAction, AuditEvent, AuditOutcome
from collabhub.api.auth.jwt import create_access_token, get_token_expiry_seconds
from collabhub.api.db.models import User, utcnow
from collabhub.api.db.ports import UnitOfWork
from collabhub.api.errors import AuthenticationError, ValidationError

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except ValueError:
        # Over 72 bytes, or a malformed hash
        return False


class AuthService:
    """Authentication service with password and JWT management."""

    def __init__(
        self,
        uow: UnitOfWork,
        recorder: Optional[AuditRecorder] = None,
        allowed_providers: Tuple[str, ...] = ("google", "github", "microsoft"),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.uow = uow
        self.recorder = recorder
        self.allowed_providers = {p.lower() for p in allowed_providers}
        self.clock = clock

    async def authenticate_password(
        self,
        email: str,
        password: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> User:
        """
        Authenticate user with email/password.

        Accounts without a password hash (federated-only) never pass.

        Raises:
            AuthenticationError: Unknown email, inactive account, no password
                or wrong password (one generic message for all)
        """
        origin = {"ip_address": ip_address, "user_agent": user_agent}
        user = await self.uow.users.get_by_email(email)

        if user is None:
            self._failed(None, "unknown_email", email=email, **origin)
            raise AuthenticationError(INVALID_CREDENTIALS)
        if not user.is_active:
            self._failed(user.id, "inactive", **origin)
            raise AuthenticationError(INVALID_CREDENTIALS)
        if not user.password_hash:
            self._failed(user.id, "no_password", **origin)
            raise AuthenticationError(INVALID_CREDENTIALS)
        if not verify_password(password, user.password_hash):
            self._failed(user.id, "bad_password", **origin)
            raise AuthenticationError(INVALID_CREDENTIALS)

        await self._logged_in(user, "password", **origin)
        return user

    async def authenticate_federated(
        self,
        provider: str,
        email: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> User:
        """
        Sign in with an identity already verified by an external provider.

        Unknown emails are provisioned as federated-only accounts.

        Raises:
            ValidationError: Provider not enabled
            AuthenticationError: Inactive account
        """
        provider = provider.lower()
        if provider not in self.allowed_providers:
            raise ValidationError(f"Unsupported identity provider: {provider}")

        origin = {"ip_address": ip_address, "user_agent": user_agent}
        user = await self.uow.users.get_by_email(email)

        if user is None:
            user = await self.uow.users.add(
                User(
                    email=email.lower(),
                    auth_provider=provider,
                    first_name=first_name,
                    last_name=last_name,
                    created_at=self.clock(),
                )
            )
            logger.info(f"Provisioned federated account {user.id} via {provider}")
            self._record(
                AuditEvent(
                    action=AuditAction.USER_CREATED,
                    resource="User",
                    user_id=user.id,
                    resource_id=str(user.id),
                    details={"provider": provider},
                    **origin,
                )
            )
        elif not user.is_active:
            self._failed(user.id, "inactive", provider=provider, **origin)
            raise AuthenticationError("Account is disabled")

        await self._logged_in(user, provider, **origin)
        return user

    async def issue_token(self, user: User) -> Dict[str, Any]:
        """Access token carrying the user's current roles and permissions."""
        resolver = PermissionResolver(self.uow.assignments, self.uow.memberships, self.clock)
        roles = await resolver.active_roles(user.id)

        role_names = sorted(r.name for r in roles)
        permissions = sorted({p for r in roles for p in (r.permissions or [])})
        return {
            "access_token": create_access_token(user.id, user.email, role_names, permissions),
            "expires_in": get_token_expiry_seconds(),
            "roles": role_names,
            "permissions": permissions,
        }

    # ------------------------------------------------------------

    async def _logged_in(self, user: User, method: str, **origin: Any) -> None:
        user.last_login_at = self.clock()
        await self.uow.commit()

        logger.info(f"User {user.id} logged in via {method}")
        self._record(
            AuditEvent(
                action=AuditAction.LOGIN,
                resource="Auth",
                user_id=user.id,
                details={"method": method},
                **origin,
            )
        )

    def _failed(self, user_id, reason: str, **kwargs: Any) -> None:
        ip_address = kwargs.pop("ip_address", None)
        user_agent = kwargs.pop("user_agent", None)
        logger.warning(f"Login failed ({reason}) for user {user_id or 'unknown'}")
        self._record(
            AuditEvent(
                action=AuditAction.LOGIN_FAILED,
                resource="Auth",
                user_id=user_id,
                details={"reason": reason, **kwargs},
                ip_address=ip_address,
                user_agent=user_agent,
                status=AuditOutcome.FAILURE,
                error_message=INVALID_CREDENTIALS,
            )
        )

    def _record(self, event: AuditEvent) -> None:
        if self.recorder is not None:
            self.recorder.record(event)
