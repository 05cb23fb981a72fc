"""
Bounded in-process message queue with periodic flushing through the Transport.
The exit-time flush belongs to the agent, which reports aggregates before flushing.
"""
import threading
import time
from collections import deque
from typing import Any

from stackimpact.constants import MAX_QUEUED_MESSAGES

from stackimpact._collaborators._base import AgentContext, PeriodicTask
from stackimpact._collaborators._transport import Transport

UPLOAD_ENDPOINT = "upload"


class MessageQueue:
    """Thread-safe queue of reporter messages. Oldest messages drop when full."""

    def __init__(self, context: AgentContext, transport: Transport) -> None:
        self._context = context
        self._transport = transport
        self._queue: deque[dict[str, Any]] = deque(maxlen=MAX_QUEUED_MESSAGES)
        self._lock = threading.Lock()
        self._task: PeriodicTask | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._queue)

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = PeriodicTask(
            "stackimpact-flush",
            self._context.config.report_interval,
            self.flush,
            self._context.diagnostics,
        )
        self._task.start()

    def add(self, topic: str, content: Any) -> None:
        message = {"topic": topic, "content": content, "added_at": int(time.time())}
        with self._lock:
            self._queue.append(message)
        self._context.diagnostics.log("Added message to the queue for topic: %s", topic)

    def flush(self) -> int:
        """
        Post every queued message as one batch. Returns the number delivered.
        On delivery failure the batch goes back to the front of the queue.
        """
        with self._lock:
            if not self._queue:
                return 0
            messages = list(self._queue)
            self._queue.clear()
        try:
            self._transport.post(UPLOAD_ENDPOINT, {"messages": messages})
        except Exception as e:
            self._context.diagnostics.error(e)
            with self._lock:
                self._queue.extendleft(reversed(messages))
            return 0
        return len(messages)
