"""Module Deployment Orchestrator (MDO).

Brings a multi-service development environment up on a local docker daemon
and tears it back down:
 - port allocation from a fixed host range
 - per-module and per-sidecar container specs
 - concurrent sidecar deployment behind sequential primaries
 - concurrent readiness polling with a bounded number of attempts
 - best-effort teardown by container name pattern
"""
