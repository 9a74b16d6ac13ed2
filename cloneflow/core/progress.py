"""
Cooperative cancellation for long-running operations.
"""

from typing import Callable, Optional

from ..errors import OperationCancelled

ProgressCallback = Callable[[str, int, int], bool]


class CancellationToken:
    """
    Wraps a progress callback returning True to continue, False to cancel.

    Algorithms call check() at coarse steps (per enzyme, per primer variant,
    per candidate length, per candidate block); never per base.
    """

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self.callback = callback
        self.cancelled = False

    def check(self, stage: str = "", done: int = 0, total: int = 0):
        """Raise OperationCancelled if the callback asks to stop."""
        if self.cancelled:
            raise OperationCancelled(f"Operation cancelled during {stage or 'processing'}")
        if self.callback is None:
            return
        if not self.callback(stage, done, total):
            self.cancelled = True
            raise OperationCancelled(f"Operation cancelled during {stage or 'processing'} ({done}/{total})")

    @classmethod
    def never(cls) -> 'CancellationToken':
        return cls(None)


def ensure_token(token: Optional[CancellationToken]) -> CancellationToken:
    return token if token is not None else CancellationToken.never()
