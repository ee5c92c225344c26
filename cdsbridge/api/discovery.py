"""Catalog of known regional discovery servers."""
import json
import logging
from pathlib import Path
from typing import Iterable, Iterator, Optional, Tuple

from cdsbridge.schema.models import DiscoveryServerEntry

logger = logging.getLogger(__name__)


# Known online regions (short name, display name, geo code, discovery host)
KNOWN_SERVERS = (
    ("NorthAmerica", "North America", "NAM", "disco.crm.dynamics.com"),
    ("EMEA", "EMEA", "EUR", "disco.crm4.dynamics.com"),
    ("APAC", "APAC", "APJ", "disco.crm5.dynamics.com"),
    ("SouthAmerica", "South America", "SAM", "disco.crm2.dynamics.com"),
    ("Oceania", "Oceania", "OCE", "disco.crm6.dynamics.com"),
    ("Japan", "Japan", "JPN", "disco.crm7.dynamics.com"),
    ("India", "India", "IND", "disco.crm8.dynamics.com"),
    ("NorthAmerica2", "North America 2", "GCC", "disco.crm9.dynamics.com"),
    ("Canada", "Canada", "CAN", "disco.crm3.dynamics.com"),
    ("UK", "United Kingdom", "GBR", "disco.crm11.dynamics.com"),
    ("France", "France", "FRA", "disco.crm12.dynamics.com"),
    ("SouthAfrica", "South Africa", "ZAF", "disco.crm14.dynamics.com"),
    ("UAE", "United Arab Emirates", "ARE", "disco.crm15.dynamics.com"),
    ("Germany", "Germany", "DEU", "disco.crm16.dynamics.com"),
    ("Switzerland", "Switzerland", "CHE", "disco.crm17.dynamics.com"),
    ("GCCHigh", "US Government L4", "USG", "disco.crm.microsoftdynamics.us"),
    ("DoD", "US Government L5 (DoD)", "DOD", "disco.crm.appsplatform.us"),
    ("China", "China", "CHN", "disco.crm.dynamics.cn"),
)


class DiscoveryRegistry:
    """
    Read-only catalog of regional servers.

    Entries are fixed at construction; lookups never mutate them.
    """

    def __init__(self, entries: Iterable[DiscoveryServerEntry]):
        self._entries: Tuple[DiscoveryServerEntry, ...] = tuple(entries)

    def __iter__(self) -> Iterator[DiscoveryServerEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> Tuple[DiscoveryServerEntry, ...]:
        return self._entries

    def find_by_geo(self, geo_code: str) -> Optional[DiscoveryServerEntry]:
        """First entry with this geography code and a short name."""
        if not geo_code:
            return None
        for entry in self._entries:
            if entry.geo_code and entry.geo_code == geo_code and entry.short_name:
                return entry
        return None

    def find_by_short_name(self, short_name: str) -> Optional[DiscoveryServerEntry]:
        """Entry by short name, case-insensitive."""
        if not short_name:
            return None
        for entry in self._entries:
            if entry.short_name.lower() == short_name.lower():
                return entry
        return None

    def find_by_host_fragment(self, fragment: str) -> Optional[DiscoveryServerEntry]:
        """First entry whose discovery host contains the fragment."""
        if not fragment:
            return None
        for entry in self._entries:
            if entry.discovery_host and fragment in entry.discovery_host and entry.short_name:
                return entry
        return None

    @classmethod
    def default(cls) -> "DiscoveryRegistry":
        """Registry of the known online regions."""
        return cls(
            DiscoveryServerEntry(short_name, display_name, geo_code, host)
            for short_name, display_name, geo_code, host in KNOWN_SERVERS
        )

    @classmethod
    def from_file(cls, path) -> "DiscoveryRegistry":
        """
        Load a registry from JSON.

        Expected shape: [{"short_name": ..., "display_name": ..., "geo_code": ...,
        "discovery_host": ...}, ...]
        """
        with open(Path(path), "r", encoding="utf-8") as f:
            data = json.load(f)

        entries = [
            DiscoveryServerEntry(
                short_name=item["short_name"],
                display_name=item.get("display_name", ""),
                geo_code=item.get("geo_code", ""),
                discovery_host=item.get("discovery_host", ""),
            )
            for item in data
        ]
        logger.info(f"Loaded {len(entries)} discovery servers from {path}")
        return cls(entries)

    @classmethod
    def load(cls, path: Optional[str] = None) -> "DiscoveryRegistry":
        """Registry from a file when given, else the built-in one."""
        return cls.from_file(path) if path else cls.default()
