import time


class PacingTimer:
    """Time since the last command send, for the controller's min command gap."""

    def __init__(self):
        self._start = time.monotonic()

    def start(self):
        self._start = time.monotonic()

    def elapsed_ms(self):
        return int((time.monotonic() - self._start) * 1000)

    def remaining_ms(self, term_ms):
        """Milliseconds left before term_ms has passed since start(), never negative."""
        return max(0, term_ms - self.elapsed_ms())
