"""
Notable-aircraft matching against the operator's watch-list.
"""

import logging
from typing import Optional

from contracts.validation import Sighting, WatchList

logger = logging.getLogger(__name__)


class _Snapshot:
    """Immutable lookup sets built from one watch-list."""
    __slots__ = ("watch_list", "type_codes", "registrations", "hex_codes")

    def __init__(self, watch_list: WatchList):
        self.watch_list = watch_list
        self.type_codes = watch_list.type_codes
        self.registrations = watch_list.registrations
        self.hex_codes = watch_list.hex_codes


class NotableMatcher:
    """
    Classifies sightings as notable.

    The lookup sets live in a single immutable snapshot that ``refresh``
    swaps in one assignment, so ``classify`` never sees a half-applied list.
    """

    def __init__(self, watch_list: Optional[WatchList] = None):
        self._snapshot = _Snapshot(watch_list or WatchList())

    @property
    def watch_list(self) -> WatchList:
        return self._snapshot.watch_list

    def classify(self, sighting: Sighting) -> bool:
        snap = self._snapshot
        return (
            (sighting.type_code is not None and sighting.type_code in snap.type_codes)
            or (sighting.registration is not None and sighting.registration.upper() in snap.registrations)
            or (sighting.hex_code is not None and sighting.hex_code in snap.hex_codes)
        )

    def refresh(self, watch_list: WatchList) -> bool:
        """Replace the list if its contents differ. Returns whether it changed."""
        if watch_list == self._snapshot.watch_list:
            return False
        self._snapshot = _Snapshot(watch_list)
        logger.info(f"Loaded {len(watch_list)} notable types or reg nums")
        return True
