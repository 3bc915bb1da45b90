"""CLI command modules for team-order."""
