from __future__ import annotations

from typing import Callable, Dict, Optional

from .models import new_id


class IdRemapper:
    """
    Maps identifiers found in an import document to freshly generated ones.

    One instance covers one import scope (a single tree). ``register`` is
    used while walking people; relationships and images only ``resolve``, so
    an id that never appeared in the people list resolves to None.
    """

    def __init__(self, id_factory: Callable[[], str] = new_id):
        self._id_factory = id_factory
        self._mapping: Dict[str, str] = {}

    def register(self, old_id: str) -> str:
        if old_id is None or old_id == "":
            raise ValueError("cannot register an empty id")
        key = str(old_id)
        if key not in self._mapping:
            self._mapping[key] = self._id_factory()
        return self._mapping[key]

    def resolve(self, old_id: Optional[str]) -> Optional[str]:
        if old_id is None:
            return None
        return self._mapping.get(str(old_id))

    def __contains__(self, old_id: object) -> bool:
        return old_id is not None and str(old_id) in self._mapping

    def __len__(self) -> int:
        return len(self._mapping)
