from __future__ import annotations

from threading import Lock, Thread
from typing import Callable


class FailureLog:
    """Failures reported by worker threads.

    Unbounded and lock-protected; a failure is never dropped no matter how many
    workers report at once.
    """

    def __init__(self) -> None:
        self.lock = Lock()
        self._errors: list[tuple[str, Exception]] = []

    def add(self, key: str, error: Exception) -> None:
        with self.lock:
            self._errors.append((key, error))

    def errors(self) -> list[Exception]:
        """Snapshot of all failures, sorted by key for deterministic reporting."""
        with self.lock:
            items = list(self._errors)
        return [e for _, e in sorted(items, key=lambda kv: kv[0])]

    def __len__(self) -> int:
        with self.lock:
            return len(self._errors)

    def __bool__(self) -> bool:
        return len(self) > 0


class WorkerGroup:
    """Threads started together and joined together."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._threads: list[Thread] = []

    def spawn(self, target: Callable[..., None], *args: object) -> None:
        thr = Thread(target=target, args=args, name=f"{self.name}-{len(self._threads)}", daemon=True)
        self._threads.append(thr)
        thr.start()

    def wait(self) -> None:
        for thr in self._threads:
            thr.join()

    def __len__(self) -> int:
        return len(self._threads)


def run_detached(target: Callable[[], None], name: str) -> Thread:
    """Start an unsupervised background task.

    Nothing waits for it and nothing receives its result; the target must log
    its own failures.
    """
    thr = Thread(target=target, name=f"unsupervised-{name}", daemon=True)
    thr.start()
    return thr
