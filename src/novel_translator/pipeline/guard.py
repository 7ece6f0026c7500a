"""Per-project exclusivity for long-running jobs."""

import threading
from contextlib import contextmanager
from typing import Iterator


class RunInProgressError(ValueError):
    """Raised when a job of the same kind is already running for a project."""


class RunGuard:
    """Set of held run tokens, keyed by ``(kind, project_id)``.

    A batch and a scan may run side by side, but never two of the same kind
    on one project.
    """

    def __init__(self) -> None:
        self._held: set[tuple[str, str]] = set()
        self._lock = threading.Lock()

    def acquire(self, kind: str, project_id: str) -> None:
        """Take the token or raise RunInProgressError."""
        key = (kind, project_id)
        with self._lock:
            if key in self._held:
                raise RunInProgressError(f"A {kind} is already running for project {project_id}")
            self._held.add(key)

    def release(self, kind: str, project_id: str) -> None:
        with self._lock:
            self._held.discard((kind, project_id))

    def is_held(self, kind: str, project_id: str) -> bool:
        with self._lock:
            return (kind, project_id) in self._held

    @contextmanager
    def hold(self, kind: str, project_id: str) -> Iterator[None]:
        self.acquire(kind, project_id)
        try:
            yield
        finally:
            self.release(kind, project_id)
