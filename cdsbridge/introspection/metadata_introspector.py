"""
Metadata Introspector - Fetches entity and attribute metadata from the Web API.

Features:
- EntityDefinitions lookups with expanded ManyToOneRelationships
- Attribute lookups including lookup Targets
- In-memory cache with 1-hour TTL, optional file cache
- Bearer token passthrough
"""

import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import requests

from cdsbridge.api.errors import MetadataFetchError
from cdsbridge.introspection.metadata_analyzer import MetadataAnalyzer
from cdsbridge.introspection.metadata_provider import MetadataProvider
from cdsbridge.schema.models import AttributeMetadata, EntityFilters, EntityMetadata

logger = logging.getLogger(__name__)

ENTITY_SELECT = "LogicalName,EntitySetName,PrimaryIdAttribute"
RELATIONSHIP_SELECT = "ReferencingAttribute,ReferencedEntity,ReferencingEntityNavigationPropertyName"


class WebApiMetadataProvider(MetadataProvider):
    """
    Reads metadata from a Dataverse Web API endpoint

    Usage:
    ```python
    provider = WebApiMetadataProvider(
        web_api_url="https://contoso.crm.dynamics.com/api/data/v9.2",
        token="eyJ0...",
    )
    entity = provider.get_entity_metadata(EntityFilters.ENTITY, "account")
    print(entity.entity_set_name)
    ```
    """

    # Cache TTL in seconds (1 hour)
    CACHE_TTL = 3600

    def __init__(
        self,
        web_api_url: str,
        token: str = "",
        timeout: int = 30,
        cache_dir: Optional[Path] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the metadata provider

        Args:
            web_api_url: Web API base URL (.../api/data/v9.2)
            token: Bearer token sent with every request
            timeout: HTTP request timeout in seconds
            cache_dir: Directory for caching entity definitions (optional)
            session: Session to reuse (optional)
        """
        self.web_api_url = web_api_url.rstrip("/")
        self.timeout = timeout
        self.cache_dir = Path(cache_dir) if cache_dir else None
        if self.cache_dir:
            self.cache_dir.mkdir(parents=True, exist_ok=True)

        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "OData-MaxVersion": "4.0",
            "OData-Version": "4.0",
        })
        if token:
            self.session.headers.update({"Authorization": f"Bearer {token}"})

        self.analyzer = MetadataAnalyzer()
        self._entity_cache: Dict[Tuple[str, int], Tuple[float, Optional[EntityMetadata]]] = {}
        self._attribute_cache: Dict[Tuple[str, str], Tuple[float, Optional[AttributeMetadata]]] = {}

    def get_entity_metadata(self, filters, entity_name):
        key = (entity_name.lower(), int(filters))
        cached = self._entity_cache.get(key)
        if cached is not None and self._is_fresh(cached[0]):
            return cached[1]

        data = self._try_load_file_cache(key)
        if data is None:
            data = self._fetch(self._entity_url(entity_name, filters))
            if data is not None:
                self._save_file_cache(key, data)

        entity = self.analyzer.analyze_entity(data) if data is not None else None
        self._entity_cache[key] = (time.time(), entity)
        return entity

    def get_attribute_metadata(self, entity_name, attribute_name):
        key = (entity_name.lower(), attribute_name.lower())
        cached = self._attribute_cache.get(key)
        if cached is not None and self._is_fresh(cached[0]):
            return cached[1]

        url = (
            f"{self.web_api_url}/EntityDefinitions(LogicalName='{key[0]}')"
            f"/Attributes(LogicalName='{key[1]}')"
        )
        data = self._fetch(url)
        attribute = self.analyzer.analyze_attribute(key[0], data) if data is not None else None
        self._attribute_cache[key] = (time.time(), attribute)
        return attribute

    def clear_cache(self) -> None:
        """Drop all in-memory cached metadata"""
        self._entity_cache.clear()
        self._attribute_cache.clear()

    def _entity_url(self, entity_name: str, filters: EntityFilters) -> str:
        url = (
            f"{self.web_api_url}/EntityDefinitions(LogicalName='{entity_name.lower()}')"
            f"?$select={ENTITY_SELECT}"
        )
        if filters & EntityFilters.RELATIONSHIPS:
            url += f"&$expand=ManyToOneRelationships($select={RELATIONSHIP_SELECT})"
        return url

    def _fetch(self, url: str) -> Optional[Dict[str, Any]]:
        """
        GET a metadata resource

        Returns:
            Parsed JSON, or None when the service answers 404

        Raises:
            MetadataFetchError: On any other failure
        """
        logger.debug(f"Fetching metadata: {url}")
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise MetadataFetchError(f"Metadata request failed for {url}: {e}") from e

        if response.status_code == 404:
            logger.debug(f"Metadata not found: {url}")
            return None

        try:
            response.raise_for_status()
            return response.json()
        except requests.exceptions.HTTPError as e:
            raise MetadataFetchError(f"Metadata request failed for {url}: {e}") from e
        except ValueError as e:
            raise MetadataFetchError(f"Invalid metadata JSON from {url}: {e}") from e

    def _is_fresh(self, fetched_at: float) -> bool:
        return time.time() - fetched_at < self.CACHE_TTL

    def _try_load_file_cache(self, key: Tuple[str, int]) -> Optional[Dict[str, Any]]:
        """Try to load a cached entity definition from file"""
        if self.cache_dir is None:
            return None
        try:
            cache_file = self._get_cache_file_path(key)
            if not cache_file.exists():
                return None

            if time.time() - cache_file.stat().st_mtime > self.CACHE_TTL:
                logger.debug(f"Cache file expired: {cache_file}")
                return None

            with open(cache_file, "r", encoding="utf-8") as f:
                return json.load(f)

        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Error loading cache file: {e}")
            return None

    def _save_file_cache(self, key: Tuple[str, int], data: Dict[str, Any]) -> None:
        """Save an entity definition to the file cache"""
        if self.cache_dir is None:
            return
        try:
            cache_file = self._get_cache_file_path(key)
            with open(cache_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            logger.debug(f"Saved metadata to cache file: {cache_file}")
        except OSError as e:
            logger.warning(f"Error saving cache file: {e}")

    def _get_cache_file_path(self, key: Tuple[str, int]) -> Path:
        """Cache file path, hashed on API URL so tenants do not collide"""
        url_hash = hashlib.md5(self.web_api_url.encode()).hexdigest()[:8]
        return self.cache_dir / f"entity_{url_hash}_{key[0]}_{key[1]}.json"
