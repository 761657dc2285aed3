"""
Zenith analytics engine components.

- realtime: Periodic metric aggregation, threshold alerting and event publishing
"""

__version__ = "0.1.0"
