"""Column layout for overlapping events of a single calendar day.

Events are plain dicts in the API's camelCase shape (``startTime``,
``startMinute``, ``endTime``, ``endMinute``). Any other keys, including a
previous ``columnIndex``/``totalColumns``, are ignored.
"""
from typing import Any, Dict, Hashable, Iterable, List, Tuple


def event_start(event: Dict[str, Any]) -> int:
    return int(event['startTime']) * 60 + int(event.get('startMinute') or 0)


def event_end(event: Dict[str, Any]) -> int:
    return int(event['endTime']) * 60 + int(event.get('endMinute') or 0)


def events_overlap(first: Dict[str, Any], second: Dict[str, Any]) -> bool:
    """Half-open interval overlap; touching endpoints do not overlap."""
    return event_start(first) < event_end(second) and event_start(second) < event_end(first)


class _DisjointSet:
    def __init__(self, size: int):
        self.parent = list(range(size))

    def find(self, idx: int) -> int:
        root = idx
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[idx] != root:
            self.parent[idx], idx = root, self.parent[idx]
        return root

    def union(self, a: int, b: int) -> None:
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return
        # Lower index wins so cluster order follows input order.
        if root_a < root_b:
            self.parent[root_b] = root_a
        else:
            self.parent[root_a] = root_b


def overlap_clusters(events: List[Dict[str, Any]]) -> List[List[int]]:
    """Group event positions into connected components of the overlap graph."""
    forest = _DisjointSet(len(events))
    for i in range(len(events)):
        for j in range(i + 1, len(events)):
            if events_overlap(events[i], events[j]):
                forest.union(i, j)

    clusters: Dict[int, List[int]] = {}
    for idx in range(len(events)):
        clusters.setdefault(forest.find(idx), []).append(idx)
    return [clusters[root] for root in sorted(clusters)]


def _assign_columns(events: List[Dict[str, Any]], members: List[int]) -> Tuple[Dict[int, int], int]:
    # sorted() is stable, so equal starts keep their input order.
    ordered = sorted(members, key=lambda idx: event_start(events[idx]))
    columns: List[List[int]] = []
    placement: Dict[int, int] = {}
    for idx in ordered:
        start = event_start(events[idx])
        for col_idx, column in enumerate(columns):
            if event_end(events[column[-1]]) <= start:
                column.append(idx)
                placement[idx] = col_idx
                break
        else:
            placement[idx] = len(columns)
            columns.append([idx])
    return placement, len(columns)


def layout_day_events(events: Iterable[Dict[str, Any]], key: str = 'id') -> Dict[Hashable, Dict[str, int]]:
    """
    Assign each event a column so overlapping events sit side by side.

    Returns ``{event_id: {'columnIndex': n, 'totalColumns': m}}``. Events without
    the identity key are keyed by their position in the input.
    """
    events = list(events)
    layout: Dict[Hashable, Dict[str, int]] = {}
    for members in overlap_clusters(events):
        if len(members) == 1:
            placement, total = {members[0]: 0}, 1
        else:
            placement, total = _assign_columns(events, members)
        for idx in members:
            ident = events[idx].get(key, idx)
            layout[ident] = {'columnIndex': placement[idx], 'totalColumns': total}
    return layout


def layout_week(events: Iterable[Dict[str, Any]], key: str = 'id') -> Dict[int, Dict[Hashable, Dict[str, int]]]:
    """Lay out a week's events per day (0=Monday .. 6=Sunday)."""
    by_day: Dict[int, List[Dict[str, Any]]] = {day: [] for day in range(7)}
    for event in events:
        by_day.setdefault(int(event['day']), []).append(event)
    return {day: layout_day_events(day_events, key=key) for day, day_events in by_day.items()}
