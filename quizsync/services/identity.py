"""Who is studying, and whether their progress is mirrored to the cloud.

The resolver is the single source of truth for the session's mode and its
current user. It does not own progress data; it only removes it when a user
is deleted.
"""

import logging

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from quizsync.config import SyncMode
from quizsync.db.models import LocalUser
from quizsync.db.session import create_session_factory
from quizsync.errors import InvalidUserError, NoCurrentUserError, UnknownUserError
from quizsync.schemas.user import RegistrationResult, RegistrationStatus
from quizsync.services.local_store import SEPARATOR, LocalStore, user_prefix
from quizsync.services.remote_store import RemoteErrorKind, RemoteStoreClient
from quizsync.services.task_queue import KeyedTaskQueue

logger = logging.getLogger(__name__)

CURRENT_USER_KEY = "current_user"
MAX_NAME_LENGTH = 20


def validate_user_name(name: str | None) -> str:
    """Return the trimmed name or raise :class:`InvalidUserError` with a reason."""
    trimmed = (name or "").strip()
    if not trimmed:
        raise InvalidUserError("User name is required")
    if len(trimmed) > MAX_NAME_LENGTH:
        raise InvalidUserError(f"User name must be at most {MAX_NAME_LENGTH} characters")
    if SEPARATOR in trimmed:
        raise InvalidUserError(f"User name may not contain {SEPARATOR!r}")
    return trimmed


class IdentityResolver:
    def __init__(
        self,
        engine: Engine,
        local: LocalStore,
        mode: SyncMode = SyncMode.LOCAL,
        *,
        remote: RemoteStoreClient | None = None,
        queue: KeyedTaskQueue | None = None,
    ) -> None:
        self._factory = create_session_factory(engine)
        self.local = local
        self.mode = mode
        self.remote = remote
        self.queue = queue
        self._current: str | None = None

        # Restore the last selection if that user still exists.
        saved = local.get_global(CURRENT_USER_KEY)
        if isinstance(saved, str) and self.is_registered(saved):
            self._current = saved

    @property
    def cloud(self) -> bool:
        return self.mode == SyncMode.CLOUD and self.remote is not None

    # ── registry ──────────────────────────────────────────────────────────

    def list_users(self) -> list[str]:
        with self._factory() as db:
            return list(db.scalars(select(LocalUser.name).order_by(LocalUser.id)))

    def is_registered(self, name: str) -> bool:
        with self._factory() as db:
            return db.scalar(select(LocalUser.id).where(LocalUser.name == name)) is not None

    def _add_local(self, name: str) -> bool:
        with self._factory() as db:
            db.add(LocalUser(name=name))
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                return False
        return True

    def register_user(self, name: str) -> RegistrationResult:
        """Add a user; never raises for bad input, the result carries the reason."""
        try:
            trimmed = validate_user_name(name)
        except InvalidUserError as exc:
            return RegistrationResult(status=RegistrationStatus.INVALID, message=str(exc))

        if self.is_registered(trimmed):
            return RegistrationResult(
                status=RegistrationStatus.ALREADY_EXISTS,
                message="This user name is already registered",
                user_name=trimmed,
            )

        if self.cloud:
            res = self.remote.create_user(trimmed)
            if res.error is not None:
                if res.error.kind == RemoteErrorKind.CONFLICT:
                    return RegistrationResult(
                        status=RegistrationStatus.ALREADY_EXISTS,
                        message="This user name is already taken",
                        user_name=trimmed,
                    )
                if res.error.kind == RemoteErrorKind.UNAVAILABLE:
                    return RegistrationResult(
                        status=RegistrationStatus.UNAVAILABLE,
                        message="Cloud service is unavailable, try again later",
                        user_name=trimmed,
                    )
                return RegistrationResult(
                    status=RegistrationStatus.INVALID,
                    message=res.error.message,
                    user_name=trimmed,
                )

        if not self._add_local(trimmed):
            return RegistrationResult(
                status=RegistrationStatus.ALREADY_EXISTS,
                message="This user name is already registered",
                user_name=trimmed,
            )
        logger.info("Registered user %s (%s mode)", trimmed, self.mode.value)
        return RegistrationResult(
            status=RegistrationStatus.SUCCESS, message="User added", user_name=trimmed
        )

    # ── current user ──────────────────────────────────────────────────────

    def current_user(self) -> str | None:
        return self._current

    def require_current_user(self) -> str:
        if self._current is None:
            raise NoCurrentUserError("No user is selected")
        return self._current

    def resolve_user(self, name: str) -> str:
        """Check *name* is registered without changing the current user."""
        trimmed = validate_user_name(name)
        if not self.is_registered(trimmed):
            raise UnknownUserError(f"User {trimmed!r} not found")
        return trimmed

    def select_user(self, name: str) -> str:
        """Make *name* the current user.

        In cloud mode an account that exists remotely but not on this
        installation is linked locally first.
        """
        trimmed = validate_user_name(name)
        if not self.is_registered(trimmed):
            if not (self.cloud and self._link_remote(trimmed)):
                raise UnknownUserError(f"User {trimmed!r} not found")
        self._current = trimmed
        self.local.set_global(CURRENT_USER_KEY, trimmed)
        logger.info("Selected user %s", trimmed)
        return trimmed

    def _link_remote(self, name: str) -> bool:
        res = self.remote.get_user(name)
        if not res.ok or res.data is None:
            return False
        self._add_local(name)
        return True

    def clear_current_user(self) -> None:
        self._current = None
        self.local.remove_global(CURRENT_USER_KEY)

    # ── deletion ──────────────────────────────────────────────────────────

    def delete_user(self, name: str) -> int:
        """Delete *name* and every local key it owns; returns keys removed."""
        trimmed = validate_user_name(name)
        with self._factory() as db:
            user = db.scalar(select(LocalUser).where(LocalUser.name == trimmed))
            if user is None:
                raise UnknownUserError(f"User {trimmed!r} not found")
            db.delete(user)
            db.commit()

        removed = self.local.remove_prefix(user_prefix(trimmed))
        if self._current == trimmed:
            self.clear_current_user()

        if self.cloud and self.queue is not None:
            # Pending answer jobs would write rows back for the deleted user.
            self.queue.flush()
            self.queue.submit((trimmed, "user"), self._delete_remote, trimmed)
        logger.info("Deleted user %s (%d local keys)", trimmed, removed)
        return removed

    def _delete_remote(self, name: str) -> None:
        res = self.remote.delete_user(name)
        if not res.ok:
            logger.warning("Remote delete of user %s failed (non-fatal): %s", name, res.error.message)
