"""
Event Normalizer - turns raw UI change notifications into UIEvents.

Raw notifications come from the device poller or from a capture file as
plain dicts shaped like Android accessibility events:

    {
        'package': 'com.instagram.android',
        'event_type': 2048,                 # or 'TYPE_WINDOW_CONTENT_CHANGED'
        'text': ['...'],                    # optional
        'content_description': '...',       # optional
        'scroll_delta_x': 0,                # optional
        'scroll_delta_y': 812,              # optional
        'snapshot': UiSnapshot | '<?xml ...',  # optional ('snapshot_xml' in captures)
        'timestamp_ms': 1234,               # optional
    }

System packages and our own package never reach the engine.
"""
import logging
from enum import Enum
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from blocker_config import SELF_PACKAGE
from ui_snapshot import UiSnapshot

logger = logging.getLogger(__name__)


class EventKind(Enum):
    APP_ENTERED = "app_entered"
    SCREEN_CHANGED = "screen_changed"
    CONTENT_CHANGED = "content_changed"
    SCROLLED = "scrolled"


# Android AccessibilityEvent type constants
TYPE_WINDOW_STATE_CHANGED = 32
TYPE_WINDOW_CONTENT_CHANGED = 2048
TYPE_VIEW_SCROLLED = 4096

_EVENT_TYPE_MAP = {
    TYPE_WINDOW_STATE_CHANGED: EventKind.SCREEN_CHANGED,
    TYPE_WINDOW_CONTENT_CHANGED: EventKind.CONTENT_CHANGED,
    TYPE_VIEW_SCROLLED: EventKind.SCROLLED,
    'TYPE_WINDOW_STATE_CHANGED': EventKind.SCREEN_CHANGED,
    'TYPE_WINDOW_CONTENT_CHANGED': EventKind.CONTENT_CHANGED,
    'TYPE_VIEW_SCROLLED': EventKind.SCROLLED,
}

SYSTEM_PACKAGE_PREFIXES = [
    "com.android",
    "com.google.android.gms",
    "com.google.android.gsf",
    "com.samsung",
    "com.sec",
    "android",
]


@dataclass
class UIEvent:
    """Normalized UI change event. Transient, never persisted."""
    app_id: str
    kind: EventKind
    content_descriptor: Union[str, List[str], None] = None
    scroll_delta_x: Optional[int] = None
    scroll_delta_y: Optional[int] = None
    snapshot: Optional[UiSnapshot] = None
    timestamp_ms: Optional[int] = None


def is_system_package(package: str, self_package: str = SELF_PACKAGE) -> bool:
    """Check if a package is system UI / services or this app itself."""
    if package == self_package:
        return True
    return any(package.startswith(prefix) for prefix in SYSTEM_PACKAGE_PREFIXES)


def _event_kind(event_type: Any) -> Optional[EventKind]:
    if isinstance(event_type, EventKind):
        return event_type
    if isinstance(event_type, str):
        name = event_type.strip()
        if name.isdigit():
            return _EVENT_TYPE_MAP.get(int(name))
        if name.upper() in _EVENT_TYPE_MAP:
            return _EVENT_TYPE_MAP[name.upper()]
        try:
            return EventKind[name.upper()]
        except KeyError:
            return None
    return _EVENT_TYPE_MAP.get(event_type)


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _snapshot(value: Any) -> Optional[UiSnapshot]:
    if value is None or isinstance(value, UiSnapshot):
        return value
    if isinstance(value, str):
        try:
            return UiSnapshot.from_xml(value)
        except ValueError as e:
            logger.debug(f"Dropping unparseable snapshot: {e}")
            return None
    return None


def normalize_event(raw: Dict[str, Any], self_package: str = SELF_PACKAGE) -> Optional[UIEvent]:
    """Normalize a raw notification.

    Args:
        raw: Raw notification dict (see module docstring).
        self_package: Our own package name, always ignored.

    Returns:
        UIEvent, or None if the notification should be discarded.
    """
    package = (raw.get('package') or '').strip()
    if not package:
        return None
    if is_system_package(package, self_package):
        return None

    kind = _event_kind(raw.get('event_type'))
    if kind is None:
        logger.debug(f"Ignoring event type {raw.get('event_type')!r} from {package}")
        return None

    descriptor = raw.get('text')
    if descriptor is None:
        descriptor = raw.get('content_description')

    return UIEvent(
        app_id=package,
        kind=kind,
        content_descriptor=descriptor,
        scroll_delta_x=_optional_int(raw.get('scroll_delta_x')),
        scroll_delta_y=_optional_int(raw.get('scroll_delta_y')),
        snapshot=_snapshot(raw.get('snapshot', raw.get('snapshot_xml'))),
        timestamp_ms=_optional_int(raw.get('timestamp_ms')),
    )


def make_app_entered(app_id: str, now_ms: Optional[int] = None) -> Dict[str, Any]:
    """Raw notification for a foreground change seen by a poller."""
    return {
        'package': app_id,
        'event_type': EventKind.APP_ENTERED.name,
        'timestamp_ms': now_ms,
    }
