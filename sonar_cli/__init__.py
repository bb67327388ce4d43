"""Read-only command-line client for the SonarQube Web API."""

__version__ = "0.2.0"
