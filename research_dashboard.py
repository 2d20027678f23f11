"""
Research Dashboard - passive diagnostics view of the engine's per-app state.

The engine hands a ResearchState to its diagnostics sinks after every event.
ResearchStateFileSink writes the latest one to a JSON file; the Flask app
below polls that file, so the page runs in its own process and can never
touch a decision.

Run: python research_dashboard.py --state-file feed_state.json
Open: http://localhost:5050
"""
import os
import json
import logging
import argparse
from collections import deque
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from flask import Flask, render_template_string, jsonify

logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = "feed_state.json"


class Verdict(Enum):
    UNKNOWN = "unknown"
    SAFE = "safe"                  # Structural NOT_IN_FEED
    WATCHING = "watching"          # In feed, inside grace period
    FEED_LIKELY = "feed_likely"    # Fallback evidence, no structure
    FEED_DETECTED = "feed_detected"


@dataclass
class ResearchState:
    """Per-event diagnostics record. Never read back by the engine."""
    app: str = ""
    timestamp_ms: int = 0
    event_kind: str = ""
    activity: Optional[str] = None
    verdict: Verdict = Verdict.UNKNOWN
    matched_rule: str = ""
    media_state: str = "none"
    media_position_ms: int = 0
    media_duration_ms: int = 0
    # Shown in-process only, never written to disk
    media_title: str = ""
    position_reset_count: int = 0
    scroll_count: int = 0
    snapshot_available: bool = False
    signals: List[str] = field(default_factory=list)
    feed_phase: str = "not_watching"
    swipe_count: int = 0
    fingerprint: int = 0
    trigger_reason: Optional[str] = None
    blocked: bool = False

    def to_dict(self, include_content: bool = False) -> Dict[str, Any]:
        """JSON-safe dict; media_title is dropped unless include_content."""
        out = asdict(self)
        out['verdict'] = self.verdict.value
        if not include_content:
            out.pop('media_title', None)
        return out


class DiagnosticsSink:
    """Anything with update(state). Subclassing is optional."""

    def update(self, state: ResearchState) -> None:
        raise NotImplementedError


class InMemoryDiagnosticsSink(DiagnosticsSink):
    """Keeps the last N states, mainly for tests and interactive sessions."""

    def __init__(self, max_history: int = 200):
        self.history: Deque[ResearchState] = deque(maxlen=max_history)

    def update(self, state: ResearchState) -> None:
        self.history.append(state)

    @property
    def latest(self) -> Optional[ResearchState]:
        return self.history[-1] if self.history else None


class ResearchStateFileSink(DiagnosticsSink):
    """Writes the latest state (plus a few counters) to a JSON file."""

    def __init__(self, path: str = DEFAULT_STATE_FILE, recent: int = 20):
        self.path = path
        self.updates = 0
        self.blocks = 0
        self._recent_blocks: Deque[Dict[str, Any]] = deque(maxlen=recent)

    def update(self, state: ResearchState) -> None:
        self.updates += 1
        if state.blocked:
            self.blocks += 1
            self._recent_blocks.appendleft({
                'app': state.app,
                'reason': state.trigger_reason,
                'timestamp_ms': state.timestamp_ms,
            })

        payload = {
            'state': state.to_dict(),
            'updates': self.updates,
            'blocks': self.blocks,
            'recent_blocks': list(self._recent_blocks),
        }
        # Write-then-rename so the dashboard never reads half a file
        tmp_path = self.path + '.tmp'
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(payload, f)
        os.replace(tmp_path, self.path)


def load_state(state_file: str) -> Dict[str, Any]:
    """Read the state file; an empty payload if missing or unreadable."""
    empty = {'state': None, 'updates': 0, 'blocks': 0, 'recent_blocks': []}
    if not os.path.exists(state_file):
        return empty
    try:
        with open(state_file, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        logger.debug(f"Could not read {state_file}: {e}")
        return empty


HTML = """
<!DOCTYPE html><html><head><meta charset="UTF-8"><title>Feed Blocker Research</title>
<style>
*{margin:0;padding:0;box-sizing:border-box}
body{font-family:sans-serif;background:#1a1a2e;color:#fff;min-height:100vh;padding:20px}
.container{max-width:900px;margin:0 auto}
header{text-align:center;margin-bottom:20px;padding:15px;background:rgba(255,255,255,0.05);border-radius:10px}
h1{font-size:1.6em;color:#00d4ff}
.stats{display:flex;gap:15px;justify-content:center;margin-bottom:20px}
.stat{background:rgba(255,255,255,0.08);padding:15px 25px;border-radius:10px;text-align:center}
.stat h3{font-size:0.8em;color:#888;margin-bottom:5px}
.stat-val{font-size:1.6em;font-weight:bold}
.panel{background:rgba(255,255,255,0.05);border-radius:10px;padding:15px;margin-bottom:20px}
.panel h2{font-size:1em;color:#00d4ff;margin-bottom:10px;border-bottom:1px solid #333;padding-bottom:5px}
td{padding:4px 12px 4px 0;font-family:'Consolas','Monaco',monospace;font-size:13px}
td.k{color:#888}
.unknown{color:#aaa}.safe{color:#00ff88}.watching{color:#ffa502}.feed_likely{color:#ff7f50}.feed_detected{color:#ff4757}
.act{padding:6px;margin:3px 0;font-size:0.9em;background:rgba(255,255,255,0.02);border-radius:5px}
</style></head>
<body><div class="container">
<header><h1>Feed Blocker Research</h1><p id="last">Loading...</p></header>
<div class="stats">
<div class="stat"><h3>VERDICT</h3><div class="stat-val" id="s-verdict">-</div></div>
<div class="stat"><h3>EVENTS</h3><div class="stat-val" id="s-updates">-</div></div>
<div class="stat"><h3>BLOCKS</h3><div class="stat-val" id="s-blocks">-</div></div>
</div>
<div class="panel"><h2>Current App</h2><table id="state"></table></div>
<div class="panel"><h2>Recent Blocks</h2><div id="blocks"></div></div>
</div>
<script>
var KEYS=['app','activity','event_kind','matched_rule','feed_phase','swipe_count','scroll_count',
'snapshot_available','media_state','media_position_ms','media_duration_ms','position_reset_count','signals'];
function esc(t){return String(t).replace(/&/g,'&amp;').replace(/</g,'&lt;').replace(/>/g,'&gt;');}
function update(){
  fetch('/api/state').then(r=>r.json()).then(d=>{
    document.getElementById('s-updates').textContent=d.updates;
    document.getElementById('s-blocks').textContent=d.blocks;
    var v=document.getElementById('s-verdict');
    if(d.state){
      v.textContent=d.state.verdict; v.className='stat-val '+d.state.verdict;
      document.getElementById('state').innerHTML=KEYS.map(k=>'<tr><td class="k">'+k+'</td><td>'+esc(d.state[k])+'</td></tr>').join('');
    }
    document.getElementById('blocks').innerHTML=d.recent_blocks.map(b=>'<div class="act"><b>'+esc(b.app)+'</b>: '+esc(b.reason)+' @ '+b.timestamp_ms+'</div>').join('');
    document.getElementById('last').textContent='Updated: '+new Date().toLocaleTimeString();
  });
}
update();
setInterval(update,1000);
</script></body></html>
"""


def create_app(state_file: str = DEFAULT_STATE_FILE) -> Flask:
    """Build the dashboard app reading state_file."""
    app = Flask(__name__)

    @app.route('/')
    def index():
        return render_template_string(HTML)

    @app.route('/api/state')
    def api_state():
        return jsonify(load_state(state_file))

    return app


def main():
    parser = argparse.ArgumentParser(description="Feed blocker research dashboard")
    parser.add_argument('--state-file', default=DEFAULT_STATE_FILE, help="State file written by the watcher")
    parser.add_argument('--port', type=int, default=5050)
    args = parser.parse_args()

    print(f"Dashboard: http://localhost:{args.port}")
    create_app(args.state_file).run(host='127.0.0.1', port=args.port, debug=False, threaded=True)


if __name__ == '__main__':
    main()
