"""
Event Recorder - decision log and capture replay.

DecisionRecorder is a diagnostics sink that appends one JSON line per
processed event (app, kind, verdict, fingerprint integer, trigger reason) so
thresholds can be calibrated offline. It never writes on-screen text.

A capture is a JSONL file of raw notifications as accepted by
normalize_event(), each with a timestamp_ms. replay_capture() feeds it
through an engine on a virtual clock.
"""
import os
import json
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List

from research_dashboard import ResearchState

logger = logging.getLogger(__name__)


class DecisionRecorder:
    """Logs engine decisions to JSONL files for analysis."""

    def __init__(self, log_dir: str = "decision_logs", session_name: str = "watch"):
        """Open a new log file for this session.

        Args:
            log_dir: Directory to store log files.
            session_name: Prefix of the log file name.
        """
        self.log_dir = log_dir
        self.session_start = datetime.now()
        self.entry_count = 0
        self.block_count = 0

        os.makedirs(log_dir, exist_ok=True)

        timestamp = self.session_start.strftime("%Y%m%d_%H%M%S")
        self.log_file = os.path.join(log_dir, f"{session_name}_{timestamp}.jsonl")
        self._file = open(self.log_file, 'a', encoding='utf-8')

        self._write_entry({
            'event': 'session_start',
            'timestamp': self.session_start.isoformat(),
        })

    def update(self, state: ResearchState):
        """Record one decision."""
        self.entry_count += 1
        if state.blocked:
            self.block_count += 1

        self._write_entry({
            'event': 'decision',
            'timestamp_ms': state.timestamp_ms,
            'app': state.app,
            'kind': state.event_kind,
            'verdict': state.verdict.value,
            'rule': state.matched_rule,
            'phase': state.feed_phase,
            'swipe_count': state.swipe_count,
            'scroll_count': state.scroll_count,
            'signals': state.signals,
            'fingerprint': state.fingerprint,
            'trigger_reason': state.trigger_reason,
            'blocked': state.blocked,
        })

    def log_session_end(self):
        self._write_entry({
            'event': 'session_end',
            'timestamp': datetime.now().isoformat(),
            'decisions': self.entry_count,
            'blocks': self.block_count,
            'duration_seconds': (datetime.now() - self.session_start).total_seconds(),
        })

    def _write_entry(self, entry: Dict[str, Any]):
        try:
            self._file.write(json.dumps(entry, ensure_ascii=False) + '\n')
            self._file.flush()
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to write decision log entry: {e}")

    def close(self):
        if not self._file.closed:
            self._file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.log_session_end()
        self.close()
        return False


def load_capture(path: str) -> List[Dict[str, Any]]:
    """Read a JSONL capture of raw events.

    Blank lines are skipped. Events without timestamp_ms are kept; the engine
    clock stamps them.

    Raises:
        FileNotFoundError: If path does not exist.
        ValueError: If a line is not a JSON object.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Capture file not found: {path}")

    events = []
    with open(path, 'r', encoding='utf-8') as f:
        for line_no, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                raw = json.loads(line)
            except json.JSONDecodeError as e:
                raise ValueError(f"{path}:{line_no}: invalid JSON ({e})") from e
            if not isinstance(raw, dict):
                raise ValueError(f"{path}:{line_no}: expected a JSON object")
            events.append(raw)
    return events


class VirtualClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start_ms: int = 0):
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance_to(self, now_ms: int):
        if now_ms > self.now_ms:
            self.now_ms = now_ms


def replay_capture(engine, events: Iterable[Dict[str, Any]], clock: VirtualClock = None) -> List[Dict[str, Any]]:
    """Drive an engine through captured events.

    Scheduled exit actions run as the virtual clock passes their due time,
    and once more after the last event.

    Args:
        engine: FeedBlockerEngine (ideally built with clock=VirtualClock).
        events: Raw notifications in arrival order.
        clock: The engine's VirtualClock; timestamps advance it.

    Returns:
        One {'timestamp_ms', 'app', 'reason'} dict per block.
    """
    blocks = []
    last_ms = 0
    for raw in events:
        ts = raw.get('timestamp_ms')
        if ts is not None:
            last_ms = max(last_ms, int(ts))
            if clock is not None:
                clock.advance_to(last_ms)
            engine.tick(last_ms)
        reason = engine.on_raw_event(raw)
        if reason is not None:
            blocks.append({'timestamp_ms': last_ms, 'app': raw.get('package'), 'reason': reason})

    while engine.scheduler.pending():
        next_due = engine.scheduler.next_due_ms()
        if clock is not None:
            clock.advance_to(next_due)
        engine.tick(next_due)
    return blocks
