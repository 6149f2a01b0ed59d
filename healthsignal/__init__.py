"""Health signal aggregation and staged advisory engine.

This package contains the domain models and pure services that turn raw
health events into chart buckets, snapshots and prioritized advisories,
isolated from storage and presentation for easy testing and reasoning.
"""
