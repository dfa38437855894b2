"""Tenant-scoped agreement list with status filtering and counts.

Filtering and counting always use the effective status (expiry
overlay applied) evaluated against the current time. Nothing derived is
cached between calls: the clock moves agreements into ``expired`` even
when no data changes.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from .models import Agreement, EffectiveStatus
from .store import AgreementStore
from .workflow import effective_status

logger = logging.getLogger("lighthouse_sign.query")

ALL = "all"

StatusFilter = Union[EffectiveStatus, str]
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize(status: StatusFilter) -> str:
    value = status.value if isinstance(status, EffectiveStatus) else str(status)
    if value != ALL:
        EffectiveStatus(value)
    return value


def matches_search(agreement: Agreement, search: str) -> bool:
    """Case-insensitive match on document title and signer names."""
    needle = search.strip().lower()
    if not needle:
        return True
    if needle in agreement.document_title.lower():
        return True
    return any(needle in s.name.lower() for s in agreement.signers)


def filter_agreements(
    agreements: list[Agreement],
    status: StatusFilter = ALL,
    search: str = "",
    now: Optional[datetime] = None,
) -> list[Agreement]:
    """Agreements whose effective status matches ``status``.

    Args:
        agreements: Snapshot to filter (order is preserved).
        status: ``all`` or an effective status value.
        search: Optional free text over title and signer names.
        now: Evaluation time (default: current UTC time).

    Raises:
        ValueError: For an unknown status filter.
    """
    wanted = _normalize(status)
    now = now or _utcnow()
    return [
        a
        for a in agreements
        if (wanted == ALL or effective_status(a, now).value == wanted)
        and matches_search(a, search)
    ]


def status_counts(
    agreements: list[Agreement], now: Optional[datetime] = None
) -> dict[str, int]:
    """Count agreements per effective status, plus ``all``.

    Every status key is present, zero when no agreement has it.
    """
    now = now or _utcnow()
    counts = {ALL: len(agreements)}
    counts.update({s.value: 0 for s in EffectiveStatus})
    for a in agreements:
        counts[effective_status(a, now).value] += 1
    return counts


class AgreementListView:
    """Live view over one tenant's most recent agreements.

    Subscribes to the store; each pushed snapshot replaces the previous
    one. Filters and counts are recomputed on every access.

    Args:
        store: Store to subscribe to.
        tenant_id: Tenant to watch.
        page_size: Number of agreements in the view.
        clock: Source of "now" for expiry evaluation.
    """

    def __init__(
        self,
        store: AgreementStore,
        tenant_id: str,
        page_size: int = 50,
        clock: Optional[Clock] = None,
    ) -> None:
        self.store = store
        self.tenant_id = tenant_id
        self.page_size = page_size
        self.clock = clock or _utcnow
        self._snapshot: list[Agreement] = []
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._listeners: list[Callable[["AgreementListView"], None]] = []
        self.updates = 0

    def start(self) -> "AgreementListView":
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(
                self.tenant_id, self._on_snapshot, limit=self.page_size
            )
        return self

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def __enter__(self) -> "AgreementListView":
        return self.start()

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def on_change(self, listener: Callable[["AgreementListView"], None]) -> None:
        """Call ``listener`` after every snapshot the view receives."""
        self._listeners.append(listener)

    def _on_snapshot(self, snapshot: list[Agreement]) -> None:
        self._snapshot = snapshot
        self.updates += 1
        logger.debug(
            "Tenant %s snapshot %d: %d agreement(s)",
            self.tenant_id,
            self.updates,
            len(snapshot),
        )
        for listener in list(self._listeners):
            listener(self)

    @property
    def agreements(self) -> list[Agreement]:
        """Current snapshot, newest ``sent_at`` first."""
        return list(self._snapshot)

    def filtered(self, status: StatusFilter = ALL, search: str = "") -> list[Agreement]:
        return filter_agreements(self._snapshot, status, search, now=self.clock())

    def counts(self) -> dict[str, int]:
        return status_counts(self._snapshot, now=self.clock())

    def effective_status(self, agreement: Agreement) -> EffectiveStatus:
        return effective_status(agreement, self.clock())
