"""Resilient client for the CTA Bus Tracker real-time API."""

__version__ = "0.1.0"
