"""
Roadwatch Coordination Backend

Risk scoring, intersection coordination and live push-event fan-out
for roadway sensor networks.

This package contains the scoring engine, the coordination aggregator,
the stream broadcaster and the thin ingestion/query adapters around them.
"""

__version__ = "1.0.0"
