"""Web helpers used by the URL summary tool."""
