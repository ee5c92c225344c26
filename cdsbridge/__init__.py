"""Web API translation and endpoint resolution for Dataverse clients."""

__version__ = "0.1.0"
