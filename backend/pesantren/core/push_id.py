"""
Chronologically ordered 20-character keys for chats and messages.

The first 8 characters encode the creation time in milliseconds, the last 12
are random. Keys created within the same millisecond increment the random
part instead of re-rolling it, so lexical order always equals creation order
within one process.
"""
import random
import threading
import time
from typing import List, Optional

# Sorted by ASCII value so string comparison matches numeric comparison
PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"
PUSH_ID_LENGTH = 20


class PushIdGenerator:
    def __init__(self):
        self._lock = threading.Lock()
        self._last_time = 0
        self._last_rand: List[int] = [0] * 12
        self._random = random.SystemRandom()

    def generate(self, now_ms: Optional[int] = None) -> str:
        if now_ms is None:
            now_ms = int(time.time() * 1000)

        with self._lock:
            # Never go backwards, even if the wall clock does
            now_ms = max(now_ms, self._last_time)
            if now_ms == self._last_time:
                self._increment_rand()
            else:
                self._last_rand = [self._random.randrange(64) for _ in range(12)]
            self._last_time = now_ms
            rand = list(self._last_rand)

        time_chars = []
        for _ in range(8):
            time_chars.append(PUSH_CHARS[now_ms % 64])
            now_ms //= 64
        if now_ms:
            raise ValueError("timestamp out of range for push id")

        return "".join(reversed(time_chars)) + "".join(PUSH_CHARS[i] for i in rand)

    def _increment_rand(self):
        i = 11
        while i >= 0 and self._last_rand[i] == 63:
            self._last_rand[i] = 0
            i -= 1
        if i < 0:
            # 64^12 keys in one millisecond; practically unreachable
            raise RuntimeError("push id space exhausted for this millisecond")
        self._last_rand[i] += 1


_generator = PushIdGenerator()


def generate_push_id(now_ms: Optional[int] = None) -> str:
    return _generator.generate(now_ms)
