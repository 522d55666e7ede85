"""Shared Prometheus registry."""

from __future__ import annotations

from prometheus_client import CollectorRegistry

# Custom registry so the service's metrics can be exposed (or inspected in
# tests) without the default process/platform collectors.
REGISTRY = CollectorRegistry()

__all__ = ["REGISTRY"]
