"""Automatic sign-in right after registration.

When :meth:`~authflow.auth.context.AuthContext.sign_up` is called with
``auto_sign_in=True`` the intent is persisted under :data:`AUTO_SIGN_IN`
and, once the provider accepts the registration, one of three strategies
completes the sign-in with the credentials the user just chose:

- **immediate** -- the account is already confirmed;
- **confirmation event** -- a one-shot ``confirmSignUp`` hub subscription
  (code verification);
- **polling** -- a :class:`~authflow.scheduling.ScheduledTask` retries every
  ``interval`` seconds until the user clicks the confirmation link or
  ``max_duration`` elapses (link verification).

Every terminating path (success, timeout, explicit failure) removes both
storage flags. A :data:`POLLING_STARTED` marker found at start-up belongs
to a process that died mid-poll; :meth:`AutoSignInOrchestrator.recover_abandoned`
reports it as a failure.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, Optional

from authflow.auth.base import ProviderUser
from authflow.auth.challenge import ChallengeStateMachine
from authflow.auth.session import error_message
from authflow.exceptions import AuthErrorType
from authflow.hub import AUTH_CHANNEL, Hub, HubEvent, Subscription
from authflow.models import AuthenticationDetails, SignUpResult
from authflow.scheduling import ScheduledTask
from authflow.storage import AuthStorage, is_true_value

logger = logging.getLogger(__name__)

AUTO_SIGN_IN = "authflow-auto-sign-in"
POLLING_STARTED = "authflow-polling-started"

POLLING_INTERVAL = 5.0
MAX_POLLING_DURATION = 180.0

UNCONFIRMED_CODE = "UserNotConfirmedException"
UNCONFIRMED_MESSAGE = "User is not confirmed."

POLLING_TIMEOUT_MESSAGE = (
    "Please confirm your account and use your credentials to sign in."
)


def is_unconfirmed(error: BaseException) -> bool:
    """Return ``True`` if *error* means the account is not confirmed yet."""
    return (
        getattr(error, "code", None) == UNCONFIRMED_CODE
        or error_message(error) == UNCONFIRMED_MESSAGE
    )


class _Run:
    """State of one registration's auto sign-in: its listener or poller."""

    def __init__(self, details: AuthenticationDetails) -> None:
        self.details = details
        self.subscription: Optional[Subscription] = None
        self.poller: Optional[ScheduledTask] = None
        self.finished = False


class AutoSignInOrchestrator:
    """Completes sign-in after registration with one of three strategies.

    Each :meth:`start` owns its listener or poller, so overlapping
    registrations settle independently.

    Args:
        machine: Runs each sign-in attempt.
        hub: Delivers ``confirmSignUp`` and receives ``autoSignIn`` events.
        storage: Holds the intent flag and the polling marker.
        verification_method: ``"link"`` selects polling, anything else the
            confirmation event.
        interval: Seconds between polling attempts.
        max_duration: Seconds after which polling gives up.
    """

    def __init__(
        self,
        machine: ChallengeStateMachine,
        hub: Hub,
        storage: AuthStorage,
        verification_method: str = "code",
        interval: float = POLLING_INTERVAL,
        max_duration: float = MAX_POLLING_DURATION,
    ) -> None:
        self._machine = machine
        self._hub = hub
        self._storage = storage
        self._verification_method = verification_method
        self._interval = interval
        self._max_duration = max_duration
        self._runs: list[_Run] = []
        self._tasks: set[asyncio.Task[Any]] = set()
        self.initiated = False

    # --- intent ---

    def request(self) -> None:
        """Persist the intent to sign in automatically after registration."""
        self._storage.set_item(AUTO_SIGN_IN, "true")

    def withdraw(self) -> None:
        """Drop the intent when registration itself failed."""
        self._storage.remove_item(AUTO_SIGN_IN)

    @property
    def requested(self) -> bool:
        return is_true_value(self._storage, AUTO_SIGN_IN)

    @property
    def active(self) -> bool:
        """``True`` while any strategy is waiting or polling."""
        return any(not run.finished for run in self._runs)

    # --- strategies ---

    def start(self, details: AuthenticationDetails, result: SignUpResult) -> None:
        """Pick a strategy for the registration described by *result*."""
        self.initiated = True
        run = _Run(details)
        self._runs.append(run)
        if result.user_confirmed:
            logger.debug("%s already confirmed, signing in", details.username)
            self._spawn(self._attempt(run))
        elif self._verification_method == "link":
            self._start_polling(run)
        else:
            self._listen_for_confirmation(run)

    def _listen_for_confirmation(self, run: _Run) -> None:
        def on_event(payload: HubEvent) -> None:
            if payload.event != "confirmSignUp" or run.subscription is None:
                return
            run.subscription.cancel()
            run.subscription = None
            self._spawn(self._attempt(run))

        run.subscription = self._hub.listen(AUTH_CHANNEL, on_event)

    def _start_polling(self, run: _Run) -> None:
        self._storage.set_item(POLLING_STARTED, "true")

        async def tick(task: ScheduledTask) -> None:
            if task.elapsed > self._max_duration:
                task.cancel()
                self._fail(run, POLLING_TIMEOUT_MESSAGE)
                return
            await self._attempt(run, polling=True)

        run.poller = ScheduledTask(self._interval, tick, name="auto-sign-in").start()

    async def _attempt(self, run: _Run, polling: bool = False) -> None:
        if run.finished:
            return
        details = run.details
        try:
            user = await self._machine.authenticate(details)
        except Exception as exc:
            if polling and is_unconfirmed(exc):
                logger.debug("%s is not confirmed yet", details.username)
                return
            logger.error("Auto sign-in failed for %s: %s", details.username, exc)
            self._fail(run, AuthErrorType.AUTO_SIGN_IN_ERROR.value, exc)
            return
        self._succeed(run, user)

    # --- terminal paths ---

    def _succeed(self, run: _Run, user: ProviderUser) -> None:
        if run.finished:
            return
        self._finish(run)
        self._hub.dispatch(
            AUTH_CHANNEL,
            "autoSignIn",
            user,
            f"{run.details.username} has signed in successfully",
        )

    def _fail(self, run: _Run, message: str, error: Optional[Exception] = None) -> None:
        if run.finished:
            return
        self._finish(run)
        self._hub.dispatch(AUTH_CHANNEL, "autoSignIn_failure", error, message)

    def _finish(self, run: _Run) -> None:
        run.finished = True
        if run.subscription is not None:
            run.subscription.cancel()
            run.subscription = None
        if run.poller is not None:
            run.poller.cancel()
        self._clear_flags()

    def _clear_flags(self) -> None:
        self._storage.remove_item(AUTO_SIGN_IN)
        self._storage.remove_item(POLLING_STARTED)

    # --- recovery ---

    def recover_abandoned(self) -> None:
        """Report a polling run left over by a previous process."""
        if self.initiated:
            return
        if is_true_value(self._storage, POLLING_STARTED):
            logger.debug("Found an abandoned auto sign-in poll")
            self._hub.dispatch(
                AUTH_CHANNEL,
                "autoSignIn_failure",
                None,
                AuthErrorType.AUTO_SIGN_IN_ERROR.value,
            )
            self._storage.remove_item(AUTO_SIGN_IN)
        self._storage.remove_item(POLLING_STARTED)

    def check_orphaned_intent(self) -> None:
        """Fail an intent that no strategy in this process will complete."""
        if self.requested and not self.initiated:
            self._hub.dispatch(
                AUTH_CHANNEL,
                "autoSignIn_failure",
                None,
                AuthErrorType.AUTO_SIGN_IN_ERROR.value,
            )
            self._storage.remove_item(AUTO_SIGN_IN)

    # --- task bookkeeping ---

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for every attempt and poller to settle."""
        for run in list(self._runs):
            if run.poller is not None:
                await run.poller.wait()
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
        self._runs = [run for run in self._runs if not run.finished]
