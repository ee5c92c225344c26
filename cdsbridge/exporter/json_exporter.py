"""JSON exporter."""
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from cdsbridge.schema.models import ResolvedEndpoint, WebApiPayload


class JsonExporter:
    """Export translated payloads and resolutions to JSON."""

    def payload_document(
        self,
        entity_name: str,
        entity_set_name: str,
        payload: WebApiPayload,
    ) -> Dict[str, Any]:
        """Document wrapping a translated payload with its context."""
        return {
            "metadata": {
                "created_at": datetime.now().isoformat(),
                "entity": entity_name,
                "entity_set": entity_set_name,
                "fields": len(payload),
            },
            "body": payload.to_dict(),
        }

    def export_payload(
        self,
        output_file: Path,
        entity_name: str,
        entity_set_name: str,
        payload: WebApiPayload,
    ) -> None:
        """Export a translated payload to a JSON file."""
        self._write(output_file, self.payload_document(entity_name, entity_set_name, payload))

    def resolution_document(
        self,
        service_uri: str,
        resolved: ResolvedEndpoint,
        geo_hint: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Document describing how a service URI was resolved."""
        return {
            "service_uri": service_uri,
            "geo_hint": geo_hint,
            "is_on_premise": resolved.is_on_premise,
            "organization_name": resolved.organization_name,
            "is_ambiguous": resolved.is_ambiguous,
            "region": resolved.region.to_dict() if resolved.region else None,
        }

    @staticmethod
    def _write(output_file: Path, data: Dict[str, Any]) -> None:
        output_file = Path(output_file)
        output_file.parent.mkdir(parents=True, exist_ok=True)

        with open(output_file, "w") as f:
            json.dump(data, f, indent=2, default=str)
