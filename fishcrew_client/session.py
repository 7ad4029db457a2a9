# =============================================================================
# FishCrew Client -- Session Manager
# =============================================================================
#
# Bearer-token REST access with transparent refresh. At most one refresh is
# in flight; requests that hit 401 meanwhile wait in FIFO order and are
# replayed once with the new token, or rejected together if it fails.
# =============================================================================

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any

import httpx

from ._logging import logger
from .constants import (
    DEFAULT_ROLE,
    PATH_PROFILE,
    PATH_REFRESH,
    PATH_SIGNIN,
    REQUEST_TIMEOUT,
)
from .errors import (
    ApiError,
    AuthExpiredError,
    FishCrewError,
    MalformedPayloadError,
    NetworkError,
    RequestTimeoutError,
    ValidationError,
)
from .events import EventEmitter, Handler, Subscription
from .storage import CredentialStore, MemoryCredentialStore
from .types import User

EVENT_SESSION_CHANGE = "change"
EVENT_AUTH_EXPIRED = "auth_expired"


class SessionManager:
    """Owns the access token and the authenticated user.

    Args:
        base_url: API base URL, e.g. ``"http://localhost:3001"``.
        store: Credential persistence (in-memory by default).
        timeout: REST timeout in seconds.
        transport: Optional ``httpx`` transport (tests use
            ``httpx.MockTransport``).
        http_client: Pre-built client; not closed by :meth:`aclose`.
    """

    def __init__(
        self,
        base_url: str,
        *,
        store: CredentialStore | None = None,
        timeout: float = REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )
        self._store = store or MemoryCredentialStore()
        self._token: str | None = None
        self._user: User | None = None

        self._refreshing = False
        self._refresh_task: asyncio.Task[str] | None = None
        self._pending: deque[asyncio.Future[str]] = deque()
        self._signals = EventEmitter("session")

    # -- Properties -----------------------------------------------------------

    @property
    def token(self) -> str | None:
        return self._token

    @property
    def user(self) -> User | None:
        return self._user

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None and self._user is not None

    @property
    def is_refreshing(self) -> bool:
        return self._refreshing

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # -- Signals --------------------------------------------------------------

    def on_change(self, handler: Handler) -> Subscription:
        """``handler(user | None)`` after sign-in, hydration or teardown."""
        return self._signals.on(EVENT_SESSION_CHANGE, handler)

    def on_auth_expired(self, handler: Handler) -> Subscription:
        """``handler(error)`` when the session is lost; route to sign-in."""
        return self._signals.on(EVENT_AUTH_EXPIRED, handler)

    # -- Session lifecycle ----------------------------------------------------

    async def sign_in(self, email: str, password: str) -> User:
        """Authenticate and persist the session.

        Raises:
            ValidationError: Empty email or password.
            ApiError: Credentials rejected.
            MalformedPayloadError: Response lacks token or user.
        """
        if not isinstance(email, str) or not email.strip():
            raise ValidationError("A valid email address is required")
        if not isinstance(password, str) or not password.strip():
            raise ValidationError("Password is required")

        data = await self.request(
            "POST",
            PATH_SIGNIN,
            json={"email": email.strip(), "password": password},
            authenticated=False,
        )
        if not isinstance(data, dict) or not data.get("token"):
            raise MalformedPayloadError("Authentication token not provided")
        user_payload = data.get("user")
        if not isinstance(user_payload, dict):
            raise MalformedPayloadError("User information not provided")
        if not user_payload.get("user_type"):
            logger.warning("User type not specified, defaulting to %s", DEFAULT_ROLE)
            user_payload = {**user_payload, "user_type": DEFAULT_ROLE}

        self._token = data["token"]
        self._user = User.from_payload(user_payload)
        self._store.save_token(self._token)

        try:
            self._user = await self.get_profile()
        except FishCrewError as exc:
            logger.warning("Failed to fetch profile after sign-in: %s", exc)
        if self._token is None:
            raise AuthExpiredError()

        self._store.save(self._token, self._user.to_payload())
        logger.info("Signed in as user %s (%s)", self._user.id, self._user.role)
        self._signals.emit(EVENT_SESSION_CHANGE, self._user)
        return self._user

    async def hydrate(self) -> User | None:
        """Restore a persisted session at app start.

        The stored identity is kept when the profile refresh fails for any
        reason other than an expired session.
        """
        token, user_payload = self._store.load()
        if not token or not user_payload:
            return None
        try:
            self._user = User.from_payload(user_payload)
        except MalformedPayloadError:
            logger.warning("Discarding malformed stored user")
            self._store.clear()
            return None
        self._token = token

        try:
            profile = await self.get_profile()
        except AuthExpiredError:
            logger.info("Stored session expired during hydration")
            if self._token is not None:
                self._teardown()
            return None
        except FishCrewError as exc:
            logger.warning("Profile refresh failed, using stored user: %s", exc)
        else:
            self._user = profile
            self._store.save(self._token, profile.to_payload())

        self._signals.emit(EVENT_SESSION_CHANGE, self._user)
        return self._user

    async def sign_out(self) -> None:
        self._store.clear()
        self._token = None
        self._user = None
        logger.info("Signed out")
        self._signals.emit(EVENT_SESSION_CHANGE, None)

    async def get_profile(self) -> User:
        return User.from_payload(await self.request("GET", PATH_PROFILE))

    async def aclose(self) -> None:
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            self._finish_refresh()
            self._reject_pending()
        await self._signals.aclose()
        if self._owns_http:
            await self._http.aclose()

    # -- Requests -------------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        authenticated: bool = True,
    ) -> Any:
        """Issue a REST call and return the decoded JSON body.

        Raises:
            AuthExpiredError: Session could not be refreshed.
            RequestTimeoutError: No response within the timeout.
            NetworkError: Server unreachable.
            ApiError: Any other non-2xx status.
        """
        token = self._token if authenticated else None
        response = await self._send(method, path, json=json, params=params, token=token)
        if response.status_code == 401 and authenticated and path != PATH_REFRESH:
            response = await self._retry_unauthorized(method, path, json, params, token)
        return self._decode(response)

    async def _retry_unauthorized(
        self,
        method: str,
        path: str,
        json: Any,
        params: dict[str, Any] | None,
        used_token: str | None,
    ) -> httpx.Response:
        # A refresh completed while this call was in flight
        if self._token is not None and used_token != self._token and not self._refreshing:
            return self._check_replay(
                await self._send(method, path, json=json, params=params, token=self._token)
            )

        if self._refreshing:
            future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
            self._pending.append(future)
            logger.debug("Request queued during token refresh: %s %s", method, path)
            new_token = await future
            return self._check_replay(
                await self._send(method, path, json=json, params=params, token=new_token)
            )

        if self._token is None:
            if used_token is not None:
                # Session already torn down by a failed refresh
                raise AuthExpiredError()
            logger.info("No token found for refresh")
            self._teardown()
            raise AuthExpiredError()

        logger.info("Token expired, attempting to refresh")
        self._refreshing = True
        self._refresh_task = asyncio.ensure_future(self._run_refresh())
        task = self._refresh_task
        try:
            new_token = await asyncio.shield(task)
        except asyncio.CancelledError:
            # The refresh outlives its caller; queued calls settle when it ends
            task.add_done_callback(self._settle_orphaned_refresh)
            raise

        # Replay the original call first, then wake the queue in FIFO order
        replay = asyncio.ensure_future(
            self._send(method, path, json=json, params=params, token=new_token)
        )
        self._resolve_pending(new_token)
        return self._check_replay(await replay)

    async def _run_refresh(self) -> str:
        """Refresh the token. Failure rejects the queue and ends the session."""
        try:
            token = await self._refresh()
        except (FishCrewError, httpx.HTTPError) as exc:
            logger.error("Token refresh failed: %s", exc)
            self._finish_refresh()
            self._reject_pending()
            self._teardown()
            raise AuthExpiredError() from exc
        except asyncio.CancelledError:
            logger.debug("Token refresh cancelled")
            self._finish_refresh()
            self._reject_pending()
            raise
        self._finish_refresh()
        return token

    def _finish_refresh(self) -> None:
        self._refreshing = False
        self._refresh_task = None

    def _settle_orphaned_refresh(self, task: asyncio.Task[str]) -> None:
        if task.cancelled() or task.exception() is not None:
            return
        self._resolve_pending(task.result())

    async def _refresh(self) -> str:
        response = await self._send("POST", PATH_REFRESH, token=self._token)
        if response.status_code == 401:
            raise AuthExpiredError("Refresh rejected")
        data = self._decode(response)
        if not isinstance(data, dict) or not data.get("token"):
            raise MalformedPayloadError("Refresh token response invalid")

        token = data["token"]
        self._token = token
        user_payload = data.get("user")
        if isinstance(user_payload, dict):
            self._user = User.from_payload(user_payload)
            self._store.save(token, self._user.to_payload())
        else:
            self._store.save_token(token)
        logger.info("Token refreshed successfully")
        return token

    def _resolve_pending(self, token: str) -> None:
        while self._pending:
            future = self._pending.popleft()
            if not future.done():
                future.set_result(token)

    def _reject_pending(self) -> None:
        while self._pending:
            future = self._pending.popleft()
            if not future.done():
                future.set_exception(AuthExpiredError())

    def _teardown(self) -> None:
        """Drop the session after an unrecoverable auth failure."""
        self._store.clear()
        self._token = None
        self._user = None
        error = AuthExpiredError()
        self._signals.emit(EVENT_SESSION_CHANGE, None)
        self._signals.emit(EVENT_AUTH_EXPIRED, error)

    @staticmethod
    def _check_replay(response: httpx.Response) -> httpx.Response:
        if response.status_code == 401:
            raise AuthExpiredError()
        return response

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        token: str | None = None,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}"} if token else None
        try:
            return await self._http.request(
                method, path, json=json, params=params, headers=headers
            )
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError(
                "Connection timed out. Please check if the backend server is running."
            ) from exc
        except httpx.TransportError as exc:
            raise NetworkError(
                f"Network connection error. Please check your internet connection: {exc}"
            ) from exc

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if response.is_success:
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError as exc:
                raise MalformedPayloadError(
                    f"Invalid JSON from {response.request.url.path}"
                ) from exc

        try:
            body = response.json()
        except ValueError:
            body = None
        message = code = None
        if isinstance(body, dict):
            message = body.get("message")
            code = body.get("code")
        raise ApiError(response.status_code, message, code=code, body=body)
