"""Token Metrics Tracker - risk snapshot ingestion and threshold alerts."""

__version__ = "0.1.0"
