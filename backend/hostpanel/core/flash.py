import threading
from collections import defaultdict, deque
from datetime import datetime

MAX_MESSAGES = 50


class MessageQueue:
    """
    One-shot operator messages (warnings from best-effort steps, notices).
    Messages are kept per user and removed when read.
    """

    def __init__(self, max_messages: int = MAX_MESSAGES):
        self._lock = threading.Lock()
        self._queues = defaultdict(lambda: deque(maxlen=max_messages))

    def push(self, user: str, level: str, text: str):
        with self._lock:
            self._queues[user].append({
                "level": level,
                "text": text,
                "created_at": datetime.utcnow().isoformat(),
            })

    def warn(self, user: str, text: str):
        self.push(user, "warning", text)

    def consume(self, user: str) -> list:
        with self._lock:
            queue = self._queues.pop(user, None)
        return list(queue) if queue else []

    def peek(self, user: str) -> list:
        with self._lock:
            return list(self._queues.get(user, ()))
