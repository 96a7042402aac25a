"""Hierarchical failure containment for faultline.

A ``ContainmentScope`` sits at one UI boundary (page, section or component),
catches failures raised by the work it owns and offers recovery actions
scoped to its blast radius. Which actions a level exposes is data
(``LEVEL_ACTIONS``), not behavior.

State machine::

    INERT --capture--> (CAPTURING) --> ACTIVE
    ACTIVE --retry--> INERT
    ACTIVE --toggle_details / send_feedback--> ACTIVE
    ACTIVE --navigate_home / reload--> DESTROYED

Racing captures: the first failure wins, later ones only log. Nothing a
scope's collaborators raise (notification hook, handler, navigator,
feedback sink) ever escapes the scope.
"""

import asyncio
import inspect
import threading
import time
import uuid
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterator, List, Optional, Set, Tuple, Union

from pydantic import BaseModel, Field

from faultline.errors import ActionNotAvailable
from faultline.logging import get_logger
from faultline.metrics import MetricsCollector

logger = get_logger(__name__, component="containment")


class ContainmentLevel(str, Enum):
    """Blast radius of a containment scope."""

    PAGE = "page"
    SECTION = "section"
    COMPONENT = "component"


class RecoveryAction(str, Enum):
    """Recovery actions a scope may offer."""

    RETRY = "retry"
    NAVIGATE_HOME = "navigate_home"
    RELOAD = "reload"
    TOGGLE_DETAILS = "toggle_details"
    SEND_FEEDBACK = "send_feedback"


class ScopeState(str, Enum):
    """Lifecycle states of a scope."""

    INERT = "inert"
    CAPTURING = "capturing"
    ACTIVE = "active"
    DESTROYED = "destroyed"


LEVEL_ACTIONS: Dict[ContainmentLevel, Tuple[RecoveryAction, ...]] = {
    ContainmentLevel.PAGE: (
        RecoveryAction.RETRY,
        RecoveryAction.NAVIGATE_HOME,
        RecoveryAction.RELOAD,
        RecoveryAction.TOGGLE_DETAILS,
        RecoveryAction.SEND_FEEDBACK,
    ),
    ContainmentLevel.SECTION: (
        RecoveryAction.RETRY,
        RecoveryAction.TOGGLE_DETAILS,
    ),
    ContainmentLevel.COMPONENT: (RecoveryAction.RETRY,),
}

LEVEL_COPY: Dict[ContainmentLevel, Tuple[str, str]] = {
    ContainmentLevel.PAGE: (
        "Something went wrong",
        "We encountered an unexpected error. Our team has been notified.",
    ),
    ContainmentLevel.SECTION: (
        "Section Error",
        "This section encountered an error and couldn't load properly.",
    ),
    ContainmentLevel.COMPONENT: (
        "Failed to load",
        "This item couldn't be displayed.",
    ),
}

DEFAULT_FEEDBACK = "User encountered an error and clicked send feedback"


@dataclass
class FailureReport:
    """What a scope forwards to its notification hook."""

    error: BaseException
    level: ContainmentLevel
    correlation_id: str
    scope: str
    context: Dict[str, Any] = field(default_factory=dict)
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Navigator:
    """Navigation collaborator used by page-level recovery actions.

    The default implementation only logs; hosts override it.
    """

    def go_home(self) -> None:
        logger.info("navigate_home_requested")

    def reload(self) -> None:
        logger.info("reload_requested")


class ScopeView(BaseModel):
    """Render model for a scope's fallback."""

    level: ContainmentLevel
    state: ScopeState
    title: Optional[str] = None
    message: Optional[str] = None
    correlation_id: Optional[str] = None
    actions: List[RecoveryAction] = Field(default_factory=list)
    details: Optional[str] = Field(default=None, description="Error text, only while details are visible")
    details_visible: bool = False
    feedback_sent: bool = False


NotificationHook = Callable[[FailureReport], Any]
ErrorHandler = Callable[[BaseException, Dict[str, Any]], Any]
FeedbackSink = Callable[[FailureReport, str], Any]


def new_correlation_id() -> str:
    """Opaque id relating a user report to server-side logs."""
    return f"error_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class ContainmentScope:
    """Failure containment controller for one UI boundary.

    Example:
        >>> page = ContainmentScope(ContainmentLevel.PAGE, name="projects", notify=reporter.capture)
        >>> widget = page.child(ContainmentLevel.COMPONENT, name="sla-widget")
        >>> with widget.guard():
        ...     render_widget()
        >>> widget.active, page.active
        (True, False)
    """

    def __init__(
        self,
        level: ContainmentLevel = ContainmentLevel.COMPONENT,
        name: Optional[str] = None,
        *,
        notify: Optional[NotificationHook] = None,
        on_error: Optional[ErrorHandler] = None,
        navigator: Optional[Navigator] = None,
        feedback: Optional[FeedbackSink] = None,
        url: Optional[str] = None,
        parent: Optional["ContainmentScope"] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.level = ContainmentLevel(level)
        self.name = name or self.level.value
        self.parent = parent
        self.url = url

        self._notify = notify
        self._on_error = on_error
        self._navigator = navigator or Navigator()
        self._feedback = feedback
        self._metrics = metrics

        self._lock = threading.Lock()
        self._state = ScopeState.INERT
        self._error: Optional[BaseException] = None
        self._report: Optional[FailureReport] = None
        self._details_visible = False
        self._feedback_sent = False
        self._pending: Set[asyncio.Task] = set()

    # State

    @property
    def state(self) -> ScopeState:
        return self._state

    @property
    def active(self) -> bool:
        return self._state == ScopeState.ACTIVE

    @property
    def destroyed(self) -> bool:
        return self._state == ScopeState.DESTROYED

    @property
    def captured_error(self) -> Optional[BaseException]:
        return self._error

    @property
    def correlation_id(self) -> Optional[str]:
        return self._report.correlation_id if self._report else None

    @property
    def details_visible(self) -> bool:
        return self._details_visible

    @property
    def feedback_sent(self) -> bool:
        return self._feedback_sent

    @property
    def actions(self) -> Tuple[RecoveryAction, ...]:
        return LEVEL_ACTIONS[self.level]

    def child(
        self,
        level: ContainmentLevel,
        name: Optional[str] = None,
        on_error: Optional[ErrorHandler] = None,
    ) -> "ContainmentScope":
        """Create a nested scope sharing this scope's collaborators."""
        return ContainmentScope(
            level,
            name=name,
            notify=self._notify,
            on_error=on_error,
            navigator=self._navigator,
            feedback=self._feedback,
            url=self.url,
            parent=self,
            metrics=self._metrics,
        )

    # Capture

    def capture(self, error: BaseException, context: Optional[Dict[str, Any]] = None) -> bool:
        """Record a failure from the owned subtree.

        Returns:
            True if this call activated the scope, False if the failure was
            discarded (already active or destroyed).
        """
        with self._lock:
            if self._state != ScopeState.INERT:
                logger.warning(
                    "containment_capture_discarded",
                    scope=self.name,
                    state=self._state.value,
                    error_type=type(error).__name__,
                )
                return False

            self._state = ScopeState.CAPTURING
            report = FailureReport(
                error=error,
                level=self.level,
                correlation_id=new_correlation_id(),
                scope=self.name,
                context={
                    "url": self.url or "unknown",
                    "scope": self.name,
                    "level": self.level.value,
                    "parent": self.parent.name if self.parent else None,
                    **(context or {}),
                },
            )
            self._report = report
            self._error = error
            self._details_visible = False
            self._feedback_sent = False
            self._state = ScopeState.ACTIVE

        logger.error(
            "containment_captured",
            scope=self.name,
            level=self.level.value,
            correlation_id=report.correlation_id,
            error_type=type(error).__name__,
            error=str(error),
        )
        if self._metrics is not None:
            self._metrics.increment("containment_captures", labels={"level": self.level.value})

        if self._notify is not None:
            self._invoke("notify", self._notify, report)
        if self._on_error is not None:
            self._invoke("on_error", self._on_error, error, report.context)
        return True

    @contextmanager
    def guard(self, **context: Any) -> Iterator["ContainmentScope"]:
        """Capture any exception raised inside the block; never re-raise it."""
        try:
            yield self
        except Exception as e:
            self.capture(e, context)

    @asynccontextmanager
    async def aguard(self, **context: Any) -> AsyncIterator["ContainmentScope"]:
        """Async variant of ``guard``."""
        try:
            yield self
        except Exception as e:
            self.capture(e, context)

    async def run(self, fn: Callable[[], Union[Any, Awaitable[Any]]], **context: Any) -> Any:
        """Execute owned work unless the scope is showing its fallback.

        Returns the work's result, or None when the scope is not inert or
        the work failed (and was captured).
        """
        if self._state != ScopeState.INERT:
            return None
        async with self.aguard(**context):
            result = fn()
            if inspect.isawaitable(result):
                result = await result
            return result
        return None

    # Recovery actions

    def _require(self, action: RecoveryAction) -> bool:
        if action not in self.actions:
            raise ActionNotAvailable(action.value, self.level.value)
        if self._state != ScopeState.ACTIVE:
            logger.debug(
                "containment_action_ignored",
                scope=self.name,
                action=action.value,
                state=self._state.value,
            )
            return False
        return True

    def retry(self) -> bool:
        """Clear captured state so the caller can re-run the subtree."""
        with self._lock:
            if not self._require(RecoveryAction.RETRY):
                return False
            correlation_id = self.correlation_id
            self._state = ScopeState.INERT
            self._error = None
            self._report = None
            self._details_visible = False
            self._feedback_sent = False

        logger.info("containment_retry", scope=self.name, correlation_id=correlation_id)
        return True

    def toggle_details(self) -> bool:
        """Flip error-detail visibility and return the new value."""
        with self._lock:
            if self._require(RecoveryAction.TOGGLE_DETAILS):
                self._details_visible = not self._details_visible
            return self._details_visible

    def send_feedback(self, message: str = DEFAULT_FEEDBACK) -> bool:
        """Send user feedback for the captured failure, at most once.

        Returns:
            True if feedback was sent by this call.
        """
        with self._lock:
            if not self._require(RecoveryAction.SEND_FEEDBACK) or self._feedback_sent:
                return False
            self._feedback_sent = True
            report = self._report

        if self._feedback is None:
            logger.info("containment_feedback", scope=self.name, correlation_id=report.correlation_id)
            return True

        if not self._invoke("feedback", self._feedback, report, message):
            with self._lock:
                if self._report is report:
                    self._feedback_sent = False
            return False
        return True

    def navigate_home(self) -> None:
        """Leave the failed page; the scope is abandoned."""
        self._leave(RecoveryAction.NAVIGATE_HOME, self._navigator.go_home)

    def reload(self) -> None:
        """Reload the failed page; the scope is abandoned."""
        self._leave(RecoveryAction.RELOAD, self._navigator.reload)

    def _leave(self, action: RecoveryAction, navigate: Callable[[], Any]) -> None:
        with self._lock:
            if not self._require(action):
                return
            self._state = ScopeState.DESTROYED

        logger.info("containment_left", scope=self.name, action=action.value, correlation_id=self.correlation_id)
        self._invoke(action.value, navigate)

    def teardown(self) -> None:
        """Destroy the scope when its owning region is torn down."""
        with self._lock:
            self._state = ScopeState.DESTROYED
        for task in list(self._pending):
            task.cancel()

    def view(self) -> ScopeView:
        """Snapshot of what the fallback UI should render."""
        with self._lock:
            if self._state != ScopeState.ACTIVE:
                return ScopeView(level=self.level, state=self._state)

            title, message = LEVEL_COPY[self.level]
            return ScopeView(
                level=self.level,
                state=self._state,
                title=title,
                message=message,
                correlation_id=self.correlation_id,
                actions=list(self.actions),
                details=str(self._error) if self._details_visible else None,
                details_visible=self._details_visible,
                feedback_sent=self._feedback_sent,
            )

    # Collaborator calls

    def _invoke(self, label: str, fn: Callable[..., Any], *args: Any) -> bool:
        """Call a collaborator; failures are logged and swallowed."""
        try:
            result = fn(*args)
            if inspect.isawaitable(result):
                self._schedule(label, result)
            return True
        except Exception as e:
            logger.error(
                "containment_collaborator_failed",
                scope=self.name,
                collaborator=label,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False

    def _schedule(self, label: str, awaitable: Awaitable[Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("containment_collaborator_dropped", scope=self.name, collaborator=label)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = loop.create_task(awaitable)
        self._pending.add(task)

        def _done(t: asyncio.Task) -> None:
            self._pending.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error(
                    "containment_collaborator_failed",
                    scope=self.name,
                    collaborator=label,
                    error=str(t.exception()),
                )

        task.add_done_callback(_done)
