from dataclasses import dataclass

from config.config import RECONNECT_FLOOR_SECONDS


@dataclass
class ReconnectBackoff:
    """
    Spacing policy for websocket connection attempts.

    Successive attempts start at least ``floor`` seconds apart: an attempt
    that dies after ``elapsed`` seconds waits ``floor - elapsed`` before the
    next one, and one that lived longer than the floor retries immediately.
    """
    floor: float = RECONNECT_FLOOR_SECONDS

    def delay(self, elapsed: float) -> float:
        if elapsed < 0:
            elapsed = 0.0
        return max(0.0, self.floor - elapsed)
