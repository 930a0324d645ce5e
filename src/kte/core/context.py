"""Cancellation and deadline context for blocking operations."""

from __future__ import annotations

import threading
import time
import weakref

from kte.core.exceptions import DeadlineExceededError, OperationCancelledError


class Context:
    """Carries a cancellation signal and an optional deadline.

    Contexts form a tree: cancelling a parent cancels every child, and a
    child's deadline is never later than its parent's. Parents hold their
    children weakly. Deadlines use the monotonic clock.
    """

    def __init__(self, deadline: float | None = None, parent: Context | None = None):
        """Initialize context.

        Args:
            deadline: Absolute monotonic deadline, or None for no deadline
            parent: Parent context whose cancellation propagates here
        """
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)

        self.deadline = deadline
        self._event = threading.Event()
        self._children: weakref.WeakSet[Context] = weakref.WeakSet()
        self._lock = threading.Lock()

        if parent is not None:
            parent._attach(self)

    @classmethod
    def background(cls) -> Context:
        """Return a context that is never cancelled and has no deadline."""
        return cls()

    def with_timeout(self, seconds: float) -> Context:
        """Derive a child context that expires after ``seconds``."""
        return Context(deadline=time.monotonic() + seconds, parent=self)

    def with_cancel(self) -> Context:
        """Derive a child context that can be cancelled independently."""
        return Context(parent=self)

    def _attach(self, child: Context) -> None:
        with self._lock:
            self._children.add(child)
            cancelled = self._event.is_set()
        if cancelled:
            child.cancel()

    def cancel(self) -> None:
        """Cancel this context and all of its children."""
        with self._lock:
            self._event.set()
            children = list(self._children)
        for child in children:
            child.cancel()

    @property
    def cancelled(self) -> bool:
        """True once cancel() was called on this context or an ancestor."""
        return self._event.is_set()

    @property
    def expired(self) -> bool:
        """True once the deadline has passed."""
        return self.deadline is not None and time.monotonic() >= self.deadline

    def done(self) -> bool:
        """True if cancelled or expired."""
        return self.cancelled or self.expired

    def remaining(self) -> float | None:
        """Seconds left until the deadline, or None without a deadline."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def bound(self, seconds: float) -> float:
        """Clamp a timeout so it never outlives the deadline."""
        remaining = self.remaining()
        return seconds if remaining is None else min(seconds, remaining)

    def raise_if_done(self, operation: str = "operation") -> None:
        """Raise if this context is cancelled or past its deadline.

        Args:
            operation: Name used in the error message

        Raises:
            OperationCancelledError: If cancelled
            DeadlineExceededError: If the deadline elapsed
        """
        if self.cancelled:
            raise OperationCancelledError(f"{operation} cancelled")
        if self.expired:
            raise DeadlineExceededError(f"{operation} exceeded its deadline")

    def sleep(self, seconds: float) -> None:
        """Sleep up to ``seconds``, waking early on cancellation or deadline."""
        self._event.wait(self.bound(seconds))


def ensure_context(ctx: Context | None) -> Context:
    """Return ``ctx`` or a background context when None."""
    return ctx if ctx is not None else Context.background()
