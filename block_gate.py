"""
Decision & Enforcement Gate.

Every positive signal (structural swipe count, scroll burst, dwell time)
ends up in DecisionGate.consider_trigger(). One global cooldown covers all
apps and all signal sources: a trigger inside the cooldown is dropped, not
queued. An accepted trigger schedules the back presses and posts the
"blocked" notification.

Back presses are delayed callbacks on a ScheduledActionQueue. The queue is
driven by the event loop (run_due), there is no timer thread, and nothing is
ever cancelled. The cooldown is longer than the delay span, so a new block
can never add actions while the previous block's are still pending.
"""
import heapq
import itertools
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from feed_id_map import get_app_display_name

logger = logging.getLogger(__name__)


@dataclass
class GlobalBlockState:
    """Process-wide enforcement bookkeeping."""
    last_block_time_ms: Optional[int] = None
    last_block_app: Optional[str] = None
    last_block_reason: Optional[str] = None
    block_count: int = 0


class ScheduledActionQueue:
    """Delayed callbacks run from the event loop, in due order."""

    def __init__(self):
        self._heap: List[Tuple[int, int, str, Callable[[], None]]] = []
        self._seq = itertools.count()

    def schedule(self, delay_ms: int, action: Callable[[], None], now_ms: int, name: str = "") -> int:
        """Schedule action to run delay_ms after now_ms. Returns its due time."""
        due = now_ms + delay_ms
        heapq.heappush(self._heap, (due, next(self._seq), name, action))
        return due

    def run_due(self, now_ms: int) -> int:
        """Run every action due at or before now_ms.

        Returns:
            Number of actions run.
        """
        ran = 0
        while self._heap and self._heap[0][0] <= now_ms:
            _, _, name, action = heapq.heappop(self._heap)
            ran += 1
            try:
                action()
            except Exception as e:
                # Fire-and-forget: the next event re-evaluates anyway
                logger.debug(f"Scheduled action {name or '?'} failed: {e}")
        return ran

    def next_due_ms(self) -> Optional[int]:
        return self._heap[0][0] if self._heap else None

    def pending(self) -> int:
        return len(self._heap)


class DecisionGate:
    """Applies the global cooldown and performs the exit action."""

    def __init__(self, host, scheduler: ScheduledActionQueue,
                 cooldown_ms: int = 3000,
                 exit_action_delays_ms: Tuple[int, ...] = (450, 550)):
        """
        Args:
            host: HostEnvironment providing perform_exit_action and
                present_notification.
            scheduler: Queue for the delayed back presses.
            cooldown_ms: Minimum interval between two blocks, all apps.
            exit_action_delays_ms: Delay of each back press after the block.
        """
        self.host = host
        self.scheduler = scheduler
        self.cooldown_ms = cooldown_ms
        self.exit_action_delays_ms = tuple(exit_action_delays_ms)
        self.state = GlobalBlockState()

    def in_cooldown(self, now_ms: int) -> bool:
        last = self.state.last_block_time_ms
        return last is not None and now_ms - last < self.cooldown_ms

    def consider_trigger(self, app_id: str, reason: str, now_ms: int) -> bool:
        """Decide whether a trigger becomes a block.

        Args:
            app_id: App that produced the trigger.
            reason: Signal source ('swipe', 'scroll_burst', 'dwell_time').
            now_ms: Trigger time.

        Returns:
            True if the block was enforced, False if dropped by cooldown.
        """
        if self.in_cooldown(now_ms):
            logger.debug(f"Trigger dropped (cooldown): {app_id} reason={reason}")
            return False

        self.state.last_block_time_ms = now_ms
        self.state.last_block_app = app_id
        self.state.last_block_reason = reason
        self.state.block_count += 1

        logger.info(f"BLOCKING video feed in {app_id} (reason={reason})")

        for i, delay in enumerate(self.exit_action_delays_ms, 1):
            self.scheduler.schedule(delay, self._exit_action(i), now_ms, name=f"back_{i}")

        display_name = get_app_display_name(app_id)
        try:
            self.host.present_notification(display_name)
        except Exception as e:
            logger.debug(f"Blocked notification failed: {e}")

        return True

    def _exit_action(self, index: int) -> Callable[[], None]:
        def action() -> None:
            try:
                self.host.perform_exit_action()
                logger.debug(f"Back press {index}")
            except Exception as e:
                # Target may already be closed - nothing to retry
                logger.debug(f"Back press {index} failed: {e}")
        return action
