"""peercache — persistent peer address cache with capability-filtered discovery."""

__version__ = "0.1.0"
