"""Watch sessions: route stream messages through a reconciler.

A ``WatchSession`` owns the current snapshot for one topic. Each inbound
message for that topic is folded in strictly in delivery order; ``stop()``
ends delivery and is safe to call any number of times.
"""
import asyncio
import signal
import sys
from typing import Any, Callable, Optional

from .logging_setup import logger
from .validation import validate_book_depth, validate_symbol

TOPIC_KINDS = ("orderbook", "tickers", "position", "order", "wallet")
PRIVATE_KINDS = frozenset(["position", "order", "wallet"])
DEFAULT_BOOK_DEPTH = 50


def build_ws_topic(kind: str, symbol: Optional[str] = None, depth: Optional[int] = None) -> str:
    """Topic name for ``kind``; market topics take a symbol, normalized to uppercase."""
    if kind in ("orderbook", "tickers"):
        if not symbol:
            raise ValueError(f"A symbol is required for {kind} topics")
        symbol = validate_symbol(symbol)
    if kind == "orderbook":
        depth = validate_book_depth(depth or DEFAULT_BOOK_DEPTH)
        return f"orderbook.{depth}.{symbol}"
    if kind == "tickers":
        return f"tickers.{symbol}"
    if kind in PRIVATE_KINDS:
        return kind
    raise ValueError(f"Unknown topic kind: {kind}")


class WatchSession:
    """Fold one topic's push messages into a snapshot.

    Args:
        client: Stream client exposing ``subscribe(topic, is_private,
                on_update, on_error, on_close)`` and ``close()``
        topic: Subscription topic, see ``build_ws_topic``
        reconcile: ``reconcile(raw, previous) -> next``
        initial: Snapshot before the first update
        on_snapshot: Called with every new snapshot
        is_private: Whether the topic needs an authenticated stream
    """

    def __init__(
        self,
        client,
        topic: str,
        reconcile: Callable[[Any, Any], Any],
        initial: Any,
        on_snapshot: Optional[Callable[[Any], None]] = None,
        is_private: bool = False,
    ):
        self.client = client
        self.topic = topic
        self.reconcile = reconcile
        self.snapshot = initial
        self.on_snapshot = on_snapshot
        self.is_private = is_private
        self.connected = False
        self.last_error: Optional[str] = None
        self.disconnected = False
        self._stopped = False
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def stopped(self) -> bool:
        return self._stopped

    def handle_message(self, message: Any) -> None:
        """Apply one push message; messages for other topics are ignored."""
        if self._stopped:
            return
        raw = message
        if isinstance(message, dict):
            topic = message.get("topic")
            if topic is not None and topic != self.topic:
                return
            raw = message.get("data", message)
        self.connected = True
        self.snapshot = self.reconcile(raw, self.snapshot)
        if self.on_snapshot is not None:
            self.on_snapshot(self.snapshot)

    def handle_error(self, error: Any) -> None:
        self.last_error = str(error)
        logger.warning(f"Stream error | topic={self.topic} error={self.last_error}")

    def handle_close(self) -> None:
        """The stream ended on its own; finish ``run()`` with the last snapshot."""
        if self._stopped:
            return
        self.disconnected = True
        logger.warning(f"Stream closed by server | topic={self.topic}")
        self.stop()

    async def run(self) -> Any:
        """Subscribe and deliver until ``stop()`` or the stream ends.

        Returns the last snapshot; ``disconnected`` tells the two apart.
        """
        self._stop_event = asyncio.Event()
        if self._stopped:
            self._stop_event.set()
        try:
            if not self._stopped:
                await self.client.subscribe(
                    self.topic, self.is_private, self.handle_message, self.handle_error, self.handle_close
                )
            await self._stop_event.wait()
        finally:
            await self.client.close()
            logger.info(f"Unsubscribed | topic={self.topic}")
        return self.snapshot

    def stop(self) -> None:
        """Stop delivering updates and let ``run()`` release the stream."""
        if self._stopped:
            return
        self._stopped = True
        if self._stop_event is not None:
            self._stop_event.set()


def once(cleanup: Callable[[], None]) -> Callable[[], None]:
    called = False

    def wrapper() -> None:
        nonlocal called
        if called:
            return
        called = True
        cleanup()

    return wrapper


def install_shutdown_handler(
    cleanup: Callable[[], None],
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> Callable[[], None]:
    """Run ``cleanup`` exactly once on SIGINT/SIGTERM.

    With an event loop the handler only runs cleanup and the loop's owner
    exits normally; without one the process exits right after cleanup.
    Returns the run-once wrapper.
    """
    handler = once(cleanup)

    def on_signal(signum, frame) -> None:
        handler()
        sys.exit(0)

    for sig in (signal.SIGINT, signal.SIGTERM):
        if loop is not None:
            loop.add_signal_handler(sig, handler)
        else:
            signal.signal(sig, on_signal)
    return handler
