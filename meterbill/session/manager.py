"""
Session Manager

Owns the sign-in lifecycle:

    UNINITIALIZED --restore()--> RESTORING --> AUTHENTICATED
                                     |
                                     +--> EXPIRED --> UNAUTHENTICATED
    UNAUTHENTICATED --sign_in()--> AUTHENTICATED
    AUTHENTICATED --sign_out() / auth failure / age limit--> UNAUTHENTICATED

Every entry into AUTHENTICATED persists {access_token, obtained_at}; every
exit clears it along with the cached identity. Leaving because of a failure
or the age limit raises a short-lived notice; an explicit sign-out does not.

Calls to the storage backend go through guard(), which is where
authorization failures are caught and turned into a session teardown.
"""

from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from meterbill.audit import AuditLogger
from meterbill.errors import (
    AuthorizationError,
    ErrorKind,
    MeterBillError,
    classify_error,
)
from meterbill.models.session import (
    EndReason,
    Identity,
    Session,
    SessionEvent,
    SessionNotice,
    SessionState,
)
from meterbill.services.identity import IdentityProviderInterface
from meterbill.services.local_state import TokenStore


logger = structlog.get_logger(__name__)

T = TypeVar("T")
SessionListener = Callable[[SessionEvent], None]

DEFAULT_MAX_AGE = timedelta(minutes=55)
DEFAULT_NOTICE_DURATION = timedelta(seconds=5)

EXPIRED_MESSAGE = "Your session has expired. Please sign in again."
SIGN_IN_REQUIRED_MESSAGE = "Please sign in to continue."


class SessionManager:
    """
    Authentication state machine with change listeners.

    The clock is injectable so tests can move time forward.
    """

    def __init__(
        self,
        identity_provider: IdentityProviderInterface,
        token_store: Optional[TokenStore] = None,
        scopes: Optional[list[str]] = None,
        max_age: timedelta = DEFAULT_MAX_AGE,
        notice_duration: timedelta = DEFAULT_NOTICE_DURATION,
        clock: Callable[[], datetime] = datetime.utcnow,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._identity_provider = identity_provider
        self._token_store = token_store or TokenStore()
        self._scopes = list(scopes or [])
        self._max_age = max_age
        self._notice_duration = notice_duration
        self._clock = clock
        self._audit_logger = audit_logger

        self._state = SessionState.UNINITIALIZED
        self._session: Optional[Session] = None
        self._notice: Optional[SessionNotice] = None
        self._listeners: list[SessionListener] = []

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def identity(self) -> Optional[Identity]:
        return self._session.identity if self._session else None

    @property
    def access_token(self) -> Optional[str]:
        """Current token, or None once the session is gone or too old."""
        if not self.is_authenticated():
            return None
        return self._session.access_token

    @property
    def stored_token(self) -> Optional[str]:
        """
        Token of the current session without the age check.

        Read by the Sheets client from worker threads, where no state
        transition may happen.
        """
        return self._session.access_token if self._session else None

    def is_authenticated(self) -> bool:
        """
        True while a session exists and is younger than the age limit.

        The age limit is checked here, lazily: a session found too old is
        expired on the spot.
        """
        if self._state != SessionState.AUTHENTICATED or self._session is None:
            return False
        if self._session.is_expired(self._clock(), self._max_age):
            self._end_session(EndReason.EXPIRED, notice=EXPIRED_MESSAGE)
            return False
        return True

    def current_notice(self) -> Optional[SessionNotice]:
        """The pending notice, while it is still visible."""
        if self._notice is not None and not self._notice.is_visible(self._clock()):
            self._notice = None
        return self._notice

    def on_session_change(self, listener: SessionListener) -> Callable[[], None]:
        """
        Register a listener for state changes.

        Returns:
            A callable that unregisters the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # =========================================================================
    # Transitions
    # =========================================================================

    async def restore(self) -> SessionState:
        """
        Pick up a persisted token at startup.

        Only acts from UNINITIALIZED. A token older than the age limit goes
        through EXPIRED to UNAUTHENTICATED without a notice.
        """
        if self._state != SessionState.UNINITIALIZED:
            return self._state

        try:
            persisted = self._token_store.load()
        except (OSError, ValueError) as e:
            logger.warning("persisted_token_unreadable", error=str(e))
            persisted = None

        if not persisted:
            self._transition(SessionState.UNAUTHENTICATED)
            return self._state

        try:
            session = Session.from_persisted(persisted)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("persisted_token_invalid", error=str(e))
            self._token_store.clear()
            self._transition(SessionState.UNAUTHENTICATED)
            return self._state

        self._transition(SessionState.RESTORING)

        if session.is_expired(self._clock(), self._max_age):
            self._token_store.clear()
            self._transition(SessionState.EXPIRED, EndReason.EXPIRED)
            if self._audit_logger:
                self._audit_logger.log_session_ended(EndReason.EXPIRED.value)
            self._transition(SessionState.UNAUTHENTICATED, EndReason.EXPIRED)
            return self._state

        self._start_session(session)
        await self._fetch_identity()
        self._log_started(restored=True)
        return self._state

    async def sign_in(self) -> Session:
        """
        Exchange credentials for a fresh token and start a session.

        Raises:
            AuthorizationError: if the token is rejected while fetching the identity
            MeterBillError: classified token exchange failure
        """
        if self.is_authenticated():
            return self._session

        try:
            token = await self._identity_provider.exchange_token(self._scopes)
        except Exception as e:
            raise classify_error(e) from e

        self._start_session(
            Session(access_token=token.access_token, obtained_at=self._clock())
        )
        await self._fetch_identity()
        self._log_started(restored=False)

        if self._session is None:
            raise AuthorizationError(EXPIRED_MESSAGE)
        return self._session

    async def sign_out(self) -> None:
        """Revoke the token and end the session. No notice is shown."""
        if self._session is None:
            return

        try:
            await self._identity_provider.revoke(self._session.access_token)
        except Exception as e:
            # The local session ends regardless
            logger.warning("token_revoke_failed", error=str(e))

        self._end_session(EndReason.SIGNED_OUT)

    def handle_failure(self, error: BaseException) -> MeterBillError:
        """
        Classify a collaborator failure.

        Authorization failures tear down the session and raise the notice.

        Returns:
            The classified error
        """
        classified = classify_error(error)
        if classified.kind == ErrorKind.AUTHORIZATION and self._session is not None:
            self._end_session(EndReason.AUTH_FAILURE, notice=classified.message)
        return classified

    async def guard(self, call: Callable[[], Awaitable[T]]) -> T:
        """
        Run one collaborator call inside the session.

        Raises:
            AuthorizationError: not signed in, or the backend rejected the token
            MeterBillError: any other failure, classified
        """
        if not self.is_authenticated():
            raise AuthorizationError(SIGN_IN_REQUIRED_MESSAGE)

        try:
            return await call()
        except Exception as e:
            classified = self.handle_failure(e)
            if classified is e:
                raise
            raise classified from e

    # =========================================================================
    # Internals
    # =========================================================================

    def _transition(
        self,
        state: SessionState,
        reason: Optional[EndReason] = None,
    ) -> None:
        previous = self._state
        self._state = state
        event = SessionEvent(
            previous_state=previous,
            state=state,
            reason=reason,
            identity=self.identity,
        )
        for listener in list(self._listeners):
            listener(event)

    def _start_session(self, session: Session) -> None:
        self._session = session
        self._notice = None
        self._token_store.save(session.to_persisted())
        self._transition(SessionState.AUTHENTICATED)

    def _log_started(self, restored: bool) -> None:
        if self._audit_logger and self._session is not None:
            identity = self._session.identity
            self._audit_logger.log_session_started(
                identity.email if identity else None,
                restored,
            )

    def _end_session(self, reason: EndReason, notice: Optional[str] = None) -> None:
        self._session = None
        self._token_store.clear()

        if reason == EndReason.EXPIRED:
            self._transition(SessionState.EXPIRED, reason)

        if notice:
            now = self._clock()
            self._notice = SessionNotice(
                message=notice,
                shown_at=now,
                expires_at=now + self._notice_duration,
            )

        if self._audit_logger:
            self._audit_logger.log_session_ended(reason.value)
        self._transition(SessionState.UNAUTHENTICATED, reason)

    async def _fetch_identity(self) -> None:
        """
        Load the identity behind the current token.

        A rejected token ends the session. Any other failure leaves the
        session in place without an identity.
        """
        session = self._session
        if session is None:
            return

        try:
            identity = await self._identity_provider.fetch_identity(session.access_token)
        except Exception as e:
            classified = self.handle_failure(e)
            if classified.kind != ErrorKind.AUTHORIZATION:
                logger.warning("identity_fetch_failed", error=classified.message)
            return

        if self._session is not session:
            return
        self._session = session.model_copy(update={"identity": identity})
        logger.info("identity_loaded", email=identity.email)
        self._transition(SessionState.AUTHENTICATED)
