"""
Ambient utilities for SyncRay

Provides:
- logging: structured/console logging setup
- tracing: OpenTelemetry spans around sync operations
- metrics: Prometheus counters for applied changes
- retry: backoff for transient connection failures
"""

__all__ = ["logging", "tracing", "metrics", "retry"]
