"""
Process-wide findings store.

Single owner of every Finding. Consumers read through all(), by_tool()
or get() and may subscribe to changes; they never mutate records directly.

Every mutation is one synchronous step (no await inside), so merges from
concurrent pollers on the same event loop never interleave.
"""

from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from aisec.types import Enrichment, Finding, Location, ToolKind
from aisec.utils import SEVERITY_RANK, get_logger, normalize_severity

log = get_logger("store")

StoreListener = Callable[["FindingsStore"], None]

# Never overwritten by a merge
_IDENTITY_FIELDS = ("id", "tool")


def _merge_nested(existing: Any, incoming: Any) -> Any:
    """Field-by-field merge for nested models; incoming non-null wins."""
    if existing is None or type(existing) is not type(incoming):
        return incoming
    updates = {
        name: value
        for name in incoming.model_fields_set
        if (value := getattr(incoming, name)) is not None
    }
    return existing.model_copy(update=updates)


def merge_finding(existing: Finding, incoming: Finding) -> Finding:
    """
    Shallow merge of incoming onto existing.

    - only fields the incoming record explicitly set are considered
    - a null never replaces a value
    - tool is immutable
    """
    updates: Dict[str, Any] = {}
    for name in incoming.model_fields_set:
        if name in _IDENTITY_FIELDS:
            continue
        value = getattr(incoming, name)
        if value is None:
            continue
        if name in ("enrichment", "location"):
            value = _merge_nested(getattr(existing, name), value)
        updates[name] = value

    if not updates:
        return existing
    return existing.model_copy(update=updates)


class FindingsView:
    """
    Live, tool-scoped view. Re-filters the store on every read.
    """

    def __init__(self, store: "FindingsStore", tool: ToolKind):
        self._store = store
        self.tool = ToolKind(tool)

    def __iter__(self) -> Iterator[Finding]:
        return iter(self.list())

    def __len__(self) -> int:
        return len(self.list())

    def list(self) -> List[Finding]:
        return [f for f in self._store.all() if f.tool == self.tool]


class FindingsStore:

    def __init__(self):
        self._records: Dict[str, Finding] = {}
        self._listeners: List[StoreListener] = []

    # ---- reads ----
    def all(self) -> List[Finding]:
        return list(self._records.values())

    def get(self, finding_id: str) -> Optional[Finding]:
        return self._records.get(finding_id)

    def by_tool(self, tool: ToolKind) -> FindingsView:
        return FindingsView(self, tool)

    @property
    def count(self) -> int:
        return len(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, finding_id: str) -> bool:
        return finding_id in self._records

    # ---- writes ----
    def add(self, records: Iterable[Finding]) -> int:
        """
        Insert or merge by id. Returns how many records were touched.
        Unknown ids are inserted; known ids are merged.
        """
        touched = 0
        for record in records or []:
            existing = self._records.get(record.id)
            self._records[record.id] = record if existing is None else merge_finding(existing, record)
            touched += 1

        if touched:
            self._notify()
        return touched

    def patch(self, finding_id: str, **fields: Any) -> Optional[Finding]:
        """
        Update one finding by id. Unknown ids are ignored (returns None).
        """
        existing = self._records.get(finding_id)
        if existing is None:
            return None

        updates: Dict[str, Any] = {}
        for name, value in fields.items():
            if name in _IDENTITY_FIELDS:
                raise ValueError(f"'{name}' cannot be patched")
            if name not in Finding.model_fields:
                raise ValueError(f"Unknown finding field: {name}")
            if value is None:
                continue
            if name == "severity":
                value = normalize_severity(value)
            elif name == "enrichment":
                incoming = value if isinstance(value, Enrichment) else Enrichment.model_validate(value)
                value = _merge_nested(existing.enrichment, incoming)
            elif name == "location":
                incoming = value if isinstance(value, Location) else Location.model_validate(value)
                value = _merge_nested(existing.location, incoming)
            updates[name] = value

        if not updates:
            return existing

        updated = existing.model_copy(update=updates)
        self._records[finding_id] = updated
        self._notify()
        return updated

    def clear(self, tool: Optional[ToolKind] = None) -> None:
        """Remove everything, or only one tool's findings."""
        if tool is None:
            self._records.clear()
        else:
            tool = ToolKind(tool)
            self._records = {k: f for k, f in self._records.items() if f.tool != tool}
        self._notify()

    # ---- subscriptions ----
    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                log.exception("Findings listener failed")


# ---------------------------------------------------------
# Ordering (the store itself promises none)
# ---------------------------------------------------------

SORT_KEYS = ("severity", "rule", "file")


def sort_findings(findings: Iterable[Finding], key: str = "severity") -> List[Finding]:
    """
    severity: rank (critical first) then rule id
    rule: rule id
    file: file path
    """
    if key not in SORT_KEYS:
        raise ValueError(f"Unknown sort key: {key}")

    if key == "severity":
        return sorted(findings, key=lambda f: (SEVERITY_RANK.get(f.severity, 9), f.rule_id or ""))
    if key == "rule":
        return sorted(findings, key=lambda f: f.rule_id or "")
    return sorted(findings, key=lambda f: (f.location.file or "") if f.location else "")
