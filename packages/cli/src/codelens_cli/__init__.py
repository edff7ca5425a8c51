"""Command line interface and API client for codelens."""
