"""Web API client, endpoint resolution and batch routing."""
