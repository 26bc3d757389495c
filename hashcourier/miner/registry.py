# hashcourier/miner/registry.py
from __future__ import annotations

from typing import Any, Dict, Iterable, List

from hashcourier.miner.logging import LogLevel, log_init
from hashcourier.miner.state import Store
from hashcourier.utils.pretty_logs import mask

REGISTRY_FILE = "address-registry.json"


class AddressRegistry:
    """
    Which projects each mining address is registered with:
    `{address: [project ids]}`. One explicit mapping, no global flag.
    """

    def __init__(self, store: Store):
        self.doc = store.document(REGISTRY_FILE)

    def _data(self) -> Dict[str, List[str]]:
        data = self.doc.read(dict)
        return data if isinstance(data, dict) else {}

    def is_registered(self, address: str, profile_id: str) -> bool:
        return profile_id in (self._data().get(address) or [])

    def profiles_for(self, address: str) -> List[str]:
        return list(self._data().get(address) or [])

    def mark_registered(self, address: str, profile_id: str) -> None:
        with self.doc.edit(dict) as data:
            profiles = data.setdefault(address, [])
            if profile_id in profiles:
                return
            profiles.append(profile_id)
        log_init(LogLevel.MEDIUM, "Address registered", "registry", {
            "address": mask(address),
            "profile": profile_id,
        })

    def import_legacy(self, records: Iterable[Dict[str, Any]], profile_id: str) -> int:
        """
        Fold old wallet records (`registered` boolean and/or `registeredProfiles`
        list) into the map. A true legacy boolean is attributed to `profile_id`
        only. Returns how many (address, profile) pairs were added.
        """
        added = 0
        with self.doc.edit(dict) as data:
            for rec in records:
                address = rec.get("bech32") or rec.get("address")
                if not address:
                    continue
                wanted = [str(p) for p in rec.get("registeredProfiles") or []]
                if rec.get("registered") is True and profile_id not in wanted:
                    wanted.append(profile_id)
                profiles = data.setdefault(address, [])
                for p in wanted:
                    if p not in profiles:
                        profiles.append(p)
                        added += 1
        if added:
            log_init(LogLevel.MEDIUM, "Migrated legacy registration flags", "registry", {"added": added})
        return added
