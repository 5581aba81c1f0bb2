"""
Cooperative cancellation for long-running loops (QAOA, training).
"""

import threading


class CancellationToken:
    """
    Thread-safe flag a caller sets to stop a running optimization.

    Loops check is_cancelled between iterations and return their best
    result so far, marked as cancelled. Nothing is interrupted mid-circuit.

    Example:
        >>> token = CancellationToken()
        >>> threading.Timer(5.0, token.cancel).start()
        >>> result = classifier.fit(x, y, cancel_token=token)
        >>> result.cancelled
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.is_cancelled})"
