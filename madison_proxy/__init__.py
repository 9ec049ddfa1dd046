"""Madison Metro GTFS-Realtime proxy."""

__version__ = "1.0"
