"""Cooperative cancellation for import runs."""


class CancellationToken:
    """Stop signal owned by one run.

    The worker polls ``cancelled`` before each partition and each page; an
    in-flight upstream call is never interrupted.
    """

    def __init__(self):
        self._cancelled = False
        self.reason: str | None = None

    def cancel(self, reason: str = "stop requested") -> None:
        if not self._cancelled:
            self._cancelled = True
            self.reason = reason

    @property
    def cancelled(self) -> bool:
        return self._cancelled
