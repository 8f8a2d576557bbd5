"""
ChessCoach package bootstrap.

Subpackages:
- interface: Adapters for HTTP, relay envelopes, CLI, and telemetry layers.
- domain: Core logic for positions, the engine session, auto-play and coaching.
- infrastructure: Integrations for engine processes, advice backends, and configuration.
"""

__all__ = ["interface", "domain", "infrastructure"]
