"""
Reconciliation loop - mutation feed and rate limiter.

    Document.notify -> MutationFeed (one batch per loop tick, self filter)
                    -> Reconciler (frame-aligned, min interval, trailing pass)
                    -> PatchApplier.apply_all

Everything runs on one asyncio event loop; nothing here is thread-safe.
"""

from typing import Any, Callable, List, Optional
import asyncio
import logging
import time

from pagepatch.layers.sense.document import RESERVED_ROOT_ID, Document, MutationRecord, is_tool_node

logger = logging.getLogger(__name__)


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class MutationFeed:
    """
    Batched structural-change notifications.

    Only childList records are kept; records originating inside the tool's
    own subtree are dropped. Records arriving within one loop tick are
    delivered together.
    """

    def __init__(
        self,
        document: Document,
        callback: Callable[[List[MutationRecord]], Any],
        reserved_root_id: str = RESERVED_ROOT_ID,
    ):
        self.document = document
        self.callback = callback
        self.reserved_root_id = reserved_root_id
        self._pending: List[MutationRecord] = []
        self._scheduled = False
        self.active = False

    def start(self) -> None:
        if self.active:
            return
        self.active = True
        self.document.observe(self._on_record)
        logger.debug("[MutationFeed] Observing document")

    def stop(self) -> None:
        self.active = False
        self.document.unobserve(self._on_record)
        self._pending = []

    def _on_record(self, record: MutationRecord) -> None:
        if record.type != "childList":
            return
        if is_tool_node(self.document, record.target, self.reserved_root_id):
            return
        self._pending.append(record)
        if self._scheduled:
            return

        loop = _running_loop()
        if loop is None:
            self._deliver()
            return
        self._scheduled = True
        loop.call_soon(self._deliver)

    def _deliver(self) -> None:
        self._scheduled = False
        batch, self._pending = self._pending, []
        if batch and self.active:
            self.callback(batch)


class Reconciler:
    """
    Rate-limited reconciliation passes.

    At most one pass per min_interval. Requests are coalesced on a frame
    timer; a request that lands inside the interval schedules a trailing
    pass for when the interval ends, so changes are never dropped.

    Example:
        >>> reconciler = Reconciler(applier.apply_all, min_interval=0.1)
        >>> feed = MutationFeed(document, reconciler.request)
        >>> feed.start()
    """

    MIN_INTERVAL = 0.1
    FRAME_INTERVAL = 1 / 60

    def __init__(
        self,
        apply: Callable[[], Any],
        min_interval: float = MIN_INTERVAL,
        frame_interval: float = FRAME_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._apply = apply
        self.min_interval = min_interval
        self.frame_interval = frame_interval
        self._clock = clock
        self._last_run: Optional[float] = None
        self._frame: Optional[asyncio.TimerHandle] = None
        self._trailing: Optional[asyncio.TimerHandle] = None
        self.passes = 0
        self.last_report: Any = None

    @property
    def pending(self) -> bool:
        return self._frame is not None or self._trailing is not None

    def request(self, batch: Optional[List[MutationRecord]] = None) -> None:
        """Ask for a pass. Batches are only a trigger; their contents are unused."""
        loop = _running_loop()
        if loop is None:
            self._run()
            return
        if self._frame is not None:
            return
        self._frame = loop.call_later(self.frame_interval, self._on_frame)

    def cancel(self) -> None:
        for handle in (self._frame, self._trailing):
            if handle is not None:
                handle.cancel()
        self._frame = None
        self._trailing = None

    def _on_frame(self) -> None:
        self._frame = None
        elapsed = None if self._last_run is None else self._clock() - self._last_run
        if elapsed is None or elapsed >= self.min_interval:
            self._run()
            return
        if self._trailing is None:
            loop = asyncio.get_running_loop()
            self._trailing = loop.call_later(self.min_interval - elapsed, self._on_trailing)

    def _on_trailing(self) -> None:
        self._trailing = None
        self.request()

    def _run(self) -> None:
        self._last_run = self._clock()
        self.passes += 1
        try:
            self.last_report = self._apply()
        except Exception as e:
            logger.error(f"[Reconciler] Pass failed: {e}")
