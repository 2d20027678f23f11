"""
UI Snapshot - parsed view of the current screen's UI hierarchy.

Built from the UIAutomator XML that Appium returns for page_source. The
snapshot is a read-only handle: the classifier looks up structural markers by
resource ID, and the fingerprint tracker hashes the visible strings. Nothing
in here keeps or logs the text itself.
"""
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import List, Optional, Tuple


_BOUNDS_RE = re.compile(r'\[(-?\d+),(-?\d+)\]\[(-?\d+),(-?\d+)\]')


def parse_bounds(bounds: str) -> Optional[Tuple[int, int, int, int]]:
    """Parse UIAutomator bounds "[x1,y1][x2,y2]" into (x1, y1, x2, y2)."""
    if not bounds:
        return None
    m = _BOUNDS_RE.match(bounds)
    if not m:
        return None
    x1, y1, x2, y2 = map(int, m.groups())
    return x1, y1, x2, y2


@dataclass(frozen=True)
class UiNode:
    """One node of the UI hierarchy."""
    resource_id: str = ""
    class_name: str = ""
    text: str = ""
    content_desc: str = ""
    bounds: Optional[Tuple[int, int, int, int]] = None
    scrollable: bool = False
    visible: bool = True

    @property
    def area(self) -> int:
        if not self.bounds:
            return 0
        x1, y1, x2, y2 = self.bounds
        return max(0, x2 - x1) * max(0, y2 - y1)


class UiSnapshot:
    """Read-only UI hierarchy of the active window."""

    def __init__(self, nodes: List[UiNode], package: str = ""):
        self._nodes = list(nodes)
        self.package = package

    @classmethod
    def from_xml(cls, xml_str: str) -> 'UiSnapshot':
        """Parse an Appium /source UIAutomator XML dump.

        Args:
            xml_str: Raw page source.

        Returns:
            UiSnapshot (empty if the dump has no hierarchy).

        Raises:
            ValueError: If the XML cannot be parsed.
        """
        if not xml_str or not xml_str.strip():
            return cls([])

        # Appium sometimes prefixes the dump with noise before the declaration
        start = xml_str.find('<?xml')
        xml_clean = xml_str[start:] if start >= 0 else xml_str

        try:
            root = ET.fromstring(xml_clean)
        except ET.ParseError as e:
            raise ValueError(f"Failed to parse UI XML: {e}") from e

        nodes = []
        package = ""
        # Appium uses class names as tags, iterate over ALL elements
        for elem in root.iter():
            if elem is root and elem.tag == 'hierarchy':
                continue
            if not package:
                package = elem.get('package', '')
            nodes.append(UiNode(
                resource_id=elem.get('resource-id', ''),
                class_name=elem.get('class', '') or elem.tag,
                text=elem.get('text', ''),
                content_desc=elem.get('content-desc', ''),
                bounds=parse_bounds(elem.get('bounds', '')),
                scrollable=elem.get('scrollable', 'false') == 'true',
                visible=elem.get('displayed', elem.get('visible-to-user', 'true')) != 'false',
            ))
        return cls(nodes, package=package)

    @property
    def nodes(self) -> List[UiNode]:
        return list(self._nodes)

    def is_empty(self) -> bool:
        return not self._nodes

    def find_markers(self, marker_id: str) -> List[UiNode]:
        """Find nodes by full resource ID. Empty list means absent."""
        return [n for n in self._nodes if n.resource_id == marker_id]

    def screen_bounds(self) -> Optional[Tuple[int, int, int, int]]:
        """Bounds of the largest node, taken as the window size."""
        best = None
        for node in self._nodes:
            if node.bounds and (best is None or node.area > best.area):
                best = node
        return best.bounds if best else None

    def is_full_screen(self, node: UiNode, coverage: float = 0.9) -> bool:
        """Check if a node covers at least `coverage` of the window."""
        screen = self.screen_bounds()
        if not screen or not node.bounds:
            return False
        x1, y1, x2, y2 = screen
        screen_area = max(0, x2 - x1) * max(0, y2 - y1)
        if screen_area == 0:
            return False
        return node.area / screen_area >= coverage

    def visible_strings(self) -> List[Tuple[str, Optional[Tuple[int, int, int, int]]]]:
        """Visible text and content descriptions with the bounds they sit at.

        Returned in traversal order. Callers must only derive hashes from
        these, never store them.
        """
        out = []
        for node in self._nodes:
            if not node.visible:
                continue
            for candidate in (node.text, node.content_desc):
                value = (candidate or '').strip()
                if value:
                    out.append((value, node.bounds))
        return out

    def __len__(self) -> int:
        return len(self._nodes)
