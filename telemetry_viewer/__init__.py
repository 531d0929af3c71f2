"""Telemetry viewer and aggregation API."""
