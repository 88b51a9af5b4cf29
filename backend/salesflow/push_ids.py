# Overview: Store-assigned record keys.

"""
Push-style identifiers.

Keys are 20 characters: 8 encode the millisecond timestamp so keys sort by
creation time, 12 are random. Two keys generated in the same millisecond by
the same process keep their order by incrementing the random tail.
"""

import secrets
import threading
import time

PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"

_lock = threading.Lock()
_last_push_ms = 0
_last_rand: list[int] = []


def generate_push_id() -> str:
    global _last_push_ms, _last_rand

    with _lock:
        now = int(time.time() * 1000)
        duplicate_time = now == _last_push_ms
        _last_push_ms = now

        time_chars = []
        for _ in range(8):
            time_chars.append(PUSH_CHARS[now % 64])
            now //= 64
        time_chars.reverse()

        if not duplicate_time or not _last_rand:
            _last_rand = [secrets.randbelow(64) for _ in range(12)]
        else:
            i = 11
            while i >= 0 and _last_rand[i] == 63:
                _last_rand[i] = 0
                i -= 1
            if i >= 0:
                _last_rand[i] += 1

        return "".join(time_chars) + "".join(PUSH_CHARS[n] for n in _last_rand)
