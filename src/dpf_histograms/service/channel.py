"""Request channel: durable, at-least-once delivery of query steps.

Consumption is a synchronous pull loop with one message in flight. Retry
decisions live here, in ``RetryPolicy``; the orchestrator never waits or
retries on its own. A failed message is either negatively acknowledged
with a backoff delay or dead-lettered with a diagnostic reason.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import os
import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Optional, Protocol
from urllib.parse import quote, unquote

from dpf_histograms.config import ChannelConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential redelivery.

    Attributes
    ----------
        max_attempts: int
            Deliveries before a retriable failure is dead-lettered.
        initial_backoff: float
            Delay after the first failed delivery, in seconds.
        max_backoff: float
            Cap on the delay, in seconds.
        multiplier: float
            Growth factor between consecutive delays.
    """

    max_attempts: int = 5
    initial_backoff: float = 1.0
    max_backoff: float = 60.0
    multiplier: float = 2.0

    @classmethod
    def from_config(cls, cfg: ChannelConfig) -> RetryPolicy:
        return cls(cfg.max_attempts, cfg.initial_backoff, cfg.max_backoff, cfg.backoff_multiplier)

    def backoff(self, attempt: int) -> float:
        """Delay before redelivering a message that failed on ``attempt``."""
        return min(self.max_backoff, self.initial_backoff * self.multiplier ** max(attempt - 1, 0))

    def should_retry(self, exc: BaseException, attempt: int) -> bool:
        """Errors without a ``retriable`` flag are treated as transient."""
        return bool(getattr(exc, "retriable", True)) and attempt < self.max_attempts


@dataclass(frozen=True)
class Message:
    """One delivery of a channel payload; ``attempt`` starts at 1."""

    id: str
    data: bytes
    attempt: int = 1
    receipt: Any = field(default=None, compare=False, repr=False)


class RequestChannel(Protocol):
    def publish(self, data: bytes, message_id: Optional[str] = None) -> bool:
        ...

    def pull(self, timeout: Optional[float] = None) -> Optional[Message]:
        ...

    def ack(self, msg: Message) -> None:
        ...

    def nack(self, msg: Message, delay: float = 0.0) -> None:
        ...

    def dead_letter(self, msg: Message, reason: str) -> None:
        ...

    def close(self) -> None:
        ...


class InMemoryChannel:
    """Process-local channel for tests and simulations."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._heap: list[tuple[float, int, Message]] = []
        self._pending_ids: set[str] = set()
        self._inflight: dict[str, Message] = {}
        self._seq = itertools.count()
        self.dead_letters: list[tuple[Message, str]] = []

    def _push(self, msg: Message, delay: float) -> None:
        heapq.heappush(self._heap, (time.monotonic() + delay, next(self._seq), msg))
        self._pending_ids.add(msg.id)
        self._cond.notify()

    def publish(self, data: bytes, message_id: Optional[str] = None) -> bool:
        """Enqueue ``data``; a message id already pending or in flight is skipped."""
        msg_id = message_id or uuid.uuid4().hex
        with self._cond:
            if msg_id in self._pending_ids or msg_id in self._inflight:
                logger.debug("message %s already queued", msg_id)
                return False
            self._push(Message(msg_id, bytes(data)), 0.0)
            return True

    def pull(self, timeout: Optional[float] = None) -> Optional[Message]:
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                now = time.monotonic()
                if self._heap and self._heap[0][0] <= now:
                    _, _, msg = heapq.heappop(self._heap)
                    self._pending_ids.discard(msg.id)
                    self._inflight[msg.id] = msg
                    return msg
                waits = []
                if self._heap:
                    waits.append(self._heap[0][0] - now)
                if deadline is not None:
                    if now >= deadline:
                        return None
                    waits.append(deadline - now)
                self._cond.wait(min(waits) if waits else None)

    def ack(self, msg: Message) -> None:
        with self._cond:
            self._inflight.pop(msg.id, None)

    def nack(self, msg: Message, delay: float = 0.0) -> None:
        with self._cond:
            self._inflight.pop(msg.id, None)
            self._push(replace(msg, attempt=msg.attempt + 1), delay)

    def dead_letter(self, msg: Message, reason: str) -> None:
        with self._cond:
            self._inflight.pop(msg.id, None)
            self.dead_letters.append((msg, reason))

    @property
    def pending_count(self) -> int:
        with self._cond:
            return len(self._heap)

    def close(self) -> None:
        """Nothing to release."""


class FileChannel:
    """Durable channel spooled in a directory.

    Layout under ``root``::

        pending/   messages waiting for delivery
        inflight/  messages claimed by a consumer
        dead/      dead-lettered messages and their reasons

    File names are ``<not-before ms>_<attempt>_<quoted id>.msg`` so a sorted
    listing is in delivery order. A consumer claims a message by renaming
    it into ``inflight/``; the rename is atomic, so two consumers never
    receive the same delivery.
    """

    SUFFIX = ".msg"

    def __init__(self, root: str | Path, poll_interval: float = 0.2) -> None:
        self.root = Path(root)
        self.poll_interval = poll_interval
        self.pending = self.root / "pending"
        self.inflight = self.root / "inflight"
        self.dead = self.root / "dead"
        self._tmp = self.root / "tmp"
        for d in (self.pending, self.inflight, self.dead, self._tmp):
            d.mkdir(parents=True, exist_ok=True)

    @classmethod
    def _name(cls, not_before: float, attempt: int, msg_id: str) -> str:
        return f"{int(not_before * 1000):015d}_{attempt:04d}_{quote(msg_id, safe='')}{cls.SUFFIX}"

    @classmethod
    def _parse(cls, name: str) -> tuple[float, int, str]:
        stem = name[: -len(cls.SUFFIX)]
        not_before, attempt, quoted = stem.split("_", 2)
        return int(not_before) / 1000.0, int(attempt), unquote(quoted)

    def _queued_ids(self) -> set[str]:
        ids = set()
        for d in (self.pending, self.inflight):
            for p in d.glob(f"*{self.SUFFIX}"):
                ids.add(self._parse(p.name)[2])
        return ids

    def publish(self, data: bytes, message_id: Optional[str] = None) -> bool:
        """Durably enqueue ``data``; a message id already pending or in flight is skipped."""
        msg_id = message_id or uuid.uuid4().hex
        if msg_id in self._queued_ids():
            logger.debug("message %s already queued", msg_id)
            return False
        tmp = self._tmp / f"{uuid.uuid4().hex}.tmp"
        with tmp.open("wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self.pending / self._name(time.time(), 1, msg_id))
        return True

    def _claim(self) -> Optional[Message]:
        now = time.time()
        for path in sorted(self.pending.glob(f"*{self.SUFFIX}")):
            not_before, attempt, msg_id = self._parse(path.name)
            if not_before > now:
                break
            target = self.inflight / path.name
            try:
                os.rename(path, target)
            except FileNotFoundError:
                continue  # claimed by another consumer
            os.utime(target)
            return Message(msg_id, target.read_bytes(), attempt, receipt=target)
        return None

    def pull(self, timeout: Optional[float] = None) -> Optional[Message]:
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            msg = self._claim()
            if msg is not None:
                return msg
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                time.sleep(min(self.poll_interval, remaining))
            else:
                time.sleep(self.poll_interval)

    def ack(self, msg: Message) -> None:
        Path(msg.receipt).unlink(missing_ok=True)

    def nack(self, msg: Message, delay: float = 0.0) -> None:
        os.rename(msg.receipt, self.pending / self._name(time.time() + delay, msg.attempt + 1, msg.id))

    def dead_letter(self, msg: Message, reason: str) -> None:
        target = self.dead / Path(msg.receipt).name
        os.rename(msg.receipt, target)
        target.with_suffix(".reason").write_text(reason)

    def recover_inflight(self, older_than: float = 0.0) -> int:
        """Requeue messages claimed more than ``older_than`` seconds ago.

        Used at startup to redeliver what a crashed consumer left behind.
        """
        now = time.time()
        recovered = 0
        for path in sorted(self.inflight.glob(f"*{self.SUFFIX}")):
            if now - path.stat().st_mtime < older_than:
                continue
            _, attempt, msg_id = self._parse(path.name)
            try:
                os.rename(path, self.pending / self._name(now, attempt + 1, msg_id))
            except FileNotFoundError:
                continue
            recovered += 1
        if recovered:
            logger.warning("requeued %d in-flight messages", recovered)
        return recovered

    def close(self) -> None:
        """Nothing to release; state lives on disk."""


def consume(
    channel: RequestChannel,
    handler: Callable[[bytes], Any],
    policy: RetryPolicy,
    *,
    stop: Optional[threading.Event] = None,
    max_messages: Optional[int] = None,
    poll_interval: float = 0.5,
    stop_when_idle: bool = False,
) -> int:
    """Pull and handle messages one at a time.

    Args:
        channel: Source of messages.
        handler: Called with each payload; returning means success.
        policy: Decides between redelivery and dead-lettering on failure.
        stop: Loop exits once set.
        max_messages: Exit after this many deliveries.
        poll_interval: Pull timeout between checks of ``stop``.
        stop_when_idle: Exit when a pull times out with nothing to deliver.

    Returns:
        Number of deliveries handled.
    """
    handled = 0
    while not (stop is not None and stop.is_set()):
        if max_messages is not None and handled >= max_messages:
            break
        msg = channel.pull(timeout=poll_interval)
        if msg is None:
            if stop_when_idle:
                break
            continue
        handled += 1
        try:
            handler(msg.data)
        except Exception as exc:
            reason = f"{type(exc).__name__}: {exc}"
            if policy.should_retry(exc, msg.attempt):
                delay = policy.backoff(msg.attempt)
                logger.warning("message %s attempt %d failed (%s); redelivering in %.1fs",
                               msg.id, msg.attempt, reason, delay)
                channel.nack(msg, delay)
            else:
                logger.error("message %s attempt %d failed (%s); dead-lettering", msg.id, msg.attempt, reason)
                channel.dead_letter(msg, reason)
            continue
        channel.ack(msg)
    return handled
