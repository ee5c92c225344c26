#!/usr/bin/env python3
"""CDS Bridge - Entry point."""
import sys
import os
import json
import logging
from pathlib import Path

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import click
from colorama import Fore, Style, init

from config import app_config
from cdsbridge import __version__
from cdsbridge.api.batch_router import should_auto_retry
from cdsbridge.api.discovery import DiscoveryRegistry
from cdsbridge.api.endpoint_resolver import EndpointResolver
from cdsbridge.api.errors import CdsClientError
from cdsbridge.builder.payload_builder import PayloadBuilder
from cdsbridge.exporter.json_exporter import JsonExporter
from cdsbridge.introspection.metadata_provider import InMemoryMetadataProvider
from cdsbridge.parser.attribute_parser import AttributeParser

# Initialize colorama
init(autoreset=True)


def print_banner():
    """Print application banner."""
    print(f"{Fore.CYAN}{'=' * 44}")
    print(f"{Fore.CYAN}║   {Fore.WHITE}CDS Bridge{Fore.CYAN}                           ║")
    print(f"{Fore.CYAN}║   {Fore.WHITE}Dataverse Web API Client Toolkit{Fore.CYAN}     ║")
    print(f"{Fore.CYAN}{'=' * 44}{Style.RESET_ALL}")
    print()


def load_registry(registry_file):
    """Registry from the given file, the configured one, or the built-in regions."""
    try:
        return DiscoveryRegistry.load(registry_file or app_config.registry_file)
    except (OSError, KeyError, ValueError) as e:
        raise click.ClickException(f"Could not load discovery registry: {e}") from e


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose):
    """CDS Bridge - Resolve endpoints and build Dataverse Web API payloads."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.argument("uri")
@click.option("--geo", default=None, help="Geography code hint (e.g. EUR)")
@click.option(
    "--registry",
    type=click.Path(exists=True),
    help="Discovery registry JSON file",
)
@click.option("--json", "as_json", is_flag=True, help="Print the resolution as JSON")
def resolve(uri, geo, registry, as_json):
    """Resolve a service URI to on-premise or an online region."""
    resolver = EndpointResolver(
        load_registry(registry),
        allow_integration_hosts=app_config.allow_integration_hosts,
    )
    resolved = resolver.resolve(uri, geo or app_config.geo or None)

    if as_json:
        click.echo(json.dumps(JsonExporter().resolution_document(uri, resolved, geo), indent=2))
        return

    print_banner()

    if resolved.is_on_premise:
        click.echo(f"{Fore.GREEN}On-premise deployment")
        org = resolved.organization_name or f"{Fore.YELLOW}(not in path)"
        click.echo(f"  Organization: {org}")
        return

    click.echo(f"{Fore.GREEN}Online deployment")
    click.echo(f"  Organization: {resolved.organization_name}")
    if resolved.is_ambiguous:
        click.echo(f"{Fore.YELLOW}⚠️  No discovery region matches this host")
    else:
        region = resolved.region
        click.echo(f"  Region: {region.display_name} ({region.short_name})")
        click.echo(f"  Geo: {region.geo_code}")
        click.echo(f"  Discovery host: {region.discovery_host}")


@cli.command()
@click.option(
    "--registry",
    type=click.Path(exists=True),
    help="Discovery registry JSON file",
)
def regions(registry):
    """List known discovery regions."""
    print_banner()

    entries = load_registry(registry)
    click.echo(f"{Fore.YELLOW}{'Short name':<16}{'Geo':<6}Discovery host")
    click.echo(f"{Fore.YELLOW}{'=' * 56}")
    for entry in entries:
        click.echo(f"{entry.short_name:<16}{entry.geo_code:<6}{entry.discovery_host}")
    click.echo(f"\n{Fore.GREEN}{len(entries)} regions")


@cli.command()
@click.argument("entity")
@click.argument("payload_json", type=click.Path(exists=True))
@click.option(
    "--metadata",
    "metadata_json",
    required=True,
    type=click.Path(exists=True),
    help="Entity definitions JSON (Web API EntityDefinitions shape)",
)
@click.option("--output", type=click.Path(), help="Write the payload document to this file")
@click.option("--save", is_flag=True, help="Write the payload document into the configured output directory")
def translate(entity, payload_json, metadata_json, output, save):
    """Translate a typed attribute document into a Web API body."""
    if save and not output:
        output = str(Path(app_config.output_dir) / f"{entity}_payload.json")
    try:
        metadata = InMemoryMetadataProvider.from_file(metadata_json)
        attributes = AttributeParser().parse_file(payload_json)
        builder = PayloadBuilder(metadata)
        payload = builder.translate(entity, attributes)
        entity_set = builder.entity_set_name(entity) if output else ""
    except (CdsClientError, OSError, ValueError) as e:
        raise click.ClickException(str(e)) from e

    if output:
        JsonExporter().export_payload(Path(output), entity, entity_set, payload)
        click.echo(f"{Fore.GREEN}✅ Payload written to {output}")
    else:
        click.echo(json.dumps(payload.to_dict(), indent=2, default=str))


@cli.command("check-retry")
@click.argument("query")
def check_retry(query):
    """Check whether a query is retried automatically."""
    if should_auto_retry(query):
        click.echo(f"{Fore.GREEN}auto-retry: yes")
    else:
        click.echo("auto-retry: no")


if __name__ == "__main__":
    cli()
