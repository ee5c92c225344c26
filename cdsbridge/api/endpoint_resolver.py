"""Resolve tenant service URIs to on-premise / online regional endpoints."""
import logging
import re
from typing import Iterable, List, Optional, Union
from urllib.parse import SplitResult, urlsplit

from cdsbridge.api.discovery import DiscoveryRegistry
from cdsbridge.schema.models import DiscoveryServerEntry, OrganizationDetail, ResolvedEndpoint

logger = logging.getLogger(__name__)

ServiceUri = Union[str, SplitResult]

_SEGMENT_PATTERN = re.compile(r"[^/]*/|[^/]+$")


class EndpointResolver:
    """Maps service URIs to a discovery region."""

    # Public cloud domains (matched against the upper-cased host)
    ONLINE_HOSTS = (
        "DYNAMICS.COM",
        "MICROSOFTDYNAMICS.DE",
        "MICROSOFTDYNAMICS.US",
        "APPSPLATFORM.US",
        "CRM.DYNAMICS.CN",
        "DYNAMICS-INT.COM",
    )

    # Integration-only domains, honoured in non-production setups
    INTEGRATION_HOSTS = (
        "CRMLIVETIE.COM",
        "CRMLIVETODAY.COM",
    )

    # Domains that always resolve by host pattern, whatever the geo hint says
    INTERNAL_HOSTS = (
        "CRMLIVETIE.COM",
        "CRMLIVETODAY.COM",
    )

    def __init__(
        self,
        registry: Optional[DiscoveryRegistry] = None,
        allow_integration_hosts: bool = False,
    ):
        """
        Initialize resolver.

        Args:
            registry: Discovery registry (defaults to the built-in regions)
            allow_integration_hosts: Also treat integration domains as online
        """
        self.registry = registry if registry is not None else DiscoveryRegistry.default()
        self.allow_integration_hosts = allow_integration_hosts

    def is_valid_online_host(self, service_uri: ServiceUri) -> bool:
        """
        Check whether the URI points at an online (cloud hosted) tenant.

        Args:
            service_uri: Tenant service URI

        Returns:
            bool: True if the host belongs to a known cloud domain
        """
        host = _host(service_uri).upper()
        domains = self.ONLINE_HOSTS
        if self.allow_integration_hosts:
            domains = domains + self.INTEGRATION_HOSTS
        return any(domain in host for domain in domains)

    def resolve(self, service_uri: ServiceUri, geo_hint: Optional[str] = None) -> ResolvedEndpoint:
        """
        Resolve a service URI.

        Order: on-premise check, geo hint (skipped for internal domains),
        host-pattern scan. An online URI matching nothing yields an empty region.

        Args:
            service_uri: Tenant service URI
            geo_hint: Optional geography code (e.g. "EUR")

        Returns:
            ResolvedEndpoint
        """
        uri = _split(service_uri)

        if not self.is_valid_online_host(uri):
            organization_name = _organization_from_path(uri.path)
            if not organization_name:
                logger.debug(f"No organization segment in on-premise URI {uri.geturl()}")
            return ResolvedEndpoint(is_on_premise=True, organization_name=organization_name)

        labels = _host_labels(uri)
        organization_name = labels[0] if labels else ""

        if geo_hint and not self._is_internal_host(uri):
            region = self.registry.find_by_geo(geo_hint)
            if region is not None:
                logger.debug(f"Resolved {uri.hostname} by geo {geo_hint} -> {region.short_name}")
                return ResolvedEndpoint(False, organization_name, region)

        region = self.registry.find_by_host_fragment(candidate_key(uri))
        if region is not None:
            logger.debug(f"Resolved {uri.hostname} by host pattern -> {region.short_name}")
        else:
            logger.debug(f"No discovery region found for {uri.hostname}")
        return ResolvedEndpoint(False, organization_name, region)

    def get_discovery_server_by_uri(self, service_uri: ServiceUri) -> Optional[DiscoveryServerEntry]:
        """Region serving an online URI, looked up again by short name."""
        resolved = self.resolve(service_uri)
        if resolved.region is None:
            return None
        return self.registry.find_by_short_name(resolved.region.short_name)

    def _is_internal_host(self, uri: SplitResult) -> bool:
        host = _host(uri).upper()
        return any(domain in host for domain in self.INTERNAL_HOSTS)


def candidate_key(service_uri: ServiceUri) -> str:
    """
    Discovery host fragment derived from a tenant host.

    Drops the organization label and any "api" label:
        contoso.api.crm.dynamics.com -> crm.dynamics.com
    """
    labels = _host_labels(_split(service_uri))[1:]
    key = ".".join(label for label in labels if label != "api")
    return key.rstrip(".").rstrip("/")


def find_organization(
    org_list: Iterable[OrganizationDetail],
    organization_name: str,
) -> Optional[OrganizationDetail]:
    """
    Find an organization by unique name, friendly name, then web address.

    Comparisons are case-insensitive.
    """
    orgs: List[OrganizationDetail] = list(org_list)
    wanted = organization_name.lower()

    for org in orgs:
        if org.unique_name.lower() == wanted:
            return org

    for org in orgs:
        if org.friendly_name.lower() == wanted:
            return org

    url_fragment = f"://{wanted}."
    for org in orgs:
        if url_fragment in org.web_application_url.lower():
            return org

    return None


def _split(service_uri: ServiceUri) -> SplitResult:
    if isinstance(service_uri, SplitResult):
        return service_uri
    return urlsplit(service_uri)


def _host(service_uri: ServiceUri) -> str:
    return _split(service_uri).hostname or ""


def _host_labels(uri: SplitResult) -> List[str]:
    return [label for label in _host(uri).split(".") if label]


def _segments(path: str) -> List[str]:
    """URI path segments, each keeping its trailing slash: "/org1/x" -> ["/", "org1/", "x"]"""
    return _SEGMENT_PATTERN.findall(path or "/")


def _organization_from_path(path: str) -> str:
    segments = _segments(path)
    if len(segments) < 2:
        return ""
    return segments[1].rstrip("/")
