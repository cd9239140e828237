"""
FeederHub - multi-feeder ADS-B telemetry ingestion.

Accepts telemetry batches from independently operated ground receivers,
validates and normalizes them, and merges them into one canonical state
per aircraft alongside an append-only history.
"""

__version__ = '1.0.0'
