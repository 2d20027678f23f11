"""
Content Fingerprint - detects "moved to a different item" without reading content.

The fingerprint is an integer hash of every visible string on screen paired
with where it sits. Per-string hashes are combined with addition, so the
traversal order of the hierarchy does not matter, but the same caption moving
to another position does change the value.

0 is reserved for "unknown/empty" and is never a valid change signal.
"""
import hashlib
from typing import Optional, Union, List

from ui_snapshot import UiSnapshot

EMPTY_FINGERPRINT = 0

_MASK = (1 << 63) - 1


def _hash_part(value: str) -> int:
    """Stable 63-bit hash (hashlib, so it survives process restarts)."""
    digest = hashlib.sha1(value.encode('utf-8')).digest()
    return int.from_bytes(digest[:8], 'big') & _MASK


def _combine(parts: List[str]) -> int:
    if not parts:
        return EMPTY_FINGERPRINT
    total = 0
    for part in parts:
        total = (total + _hash_part(part)) & _MASK
    # Keep 0 reserved for "empty"
    return total or 1


def compute_fingerprint(snapshot: Optional[UiSnapshot]) -> int:
    """Compute the content fingerprint of a UI snapshot.

    Args:
        snapshot: Current UI snapshot (None allowed).

    Returns:
        Nonzero int when visible text exists, 0 otherwise.
    """
    if snapshot is None:
        return EMPTY_FINGERPRINT

    parts = []
    for value, bounds in snapshot.visible_strings():
        position = f"{bounds[0]},{bounds[1]},{bounds[2]},{bounds[3]}" if bounds else "-"
        parts.append(f"{position}|{value}")
    return _combine(parts)


def fingerprint_text(descriptor: Union[str, List[str], None]) -> int:
    """Fingerprint a raw content descriptor carried by an event."""
    if not descriptor:
        return EMPTY_FINGERPRINT
    if isinstance(descriptor, str):
        descriptor = [descriptor]
    parts = [f"{i}|{s.strip()}" for i, s in enumerate(descriptor) if s and s.strip()]
    return _combine(parts)


class ContentFingerprintTracker:
    """Recomputes fingerprints per app; keeps only the integer."""

    def update(self, app_state, snapshot: Optional[UiSnapshot],
               descriptor: Union[str, List[str], None] = None) -> int:
        """Recompute and remember the latest fingerprint for an app.

        Args:
            app_state: AppSessionState of the app.
            snapshot: Current UI snapshot, if any.
            descriptor: Raw event text, used when the snapshot shows no text
                (a video pager with captions hidden).

        Returns:
            The fresh fingerprint (0 if nothing visible).
        """
        fingerprint = compute_fingerprint(snapshot)
        if fingerprint == EMPTY_FINGERPRINT:
            fingerprint = fingerprint_text(descriptor)
        app_state.last_fingerprint = fingerprint
        return fingerprint
