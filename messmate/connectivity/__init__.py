"""Connectivity tracking package."""

from messmate.connectivity.monitor import ConnectivityMonitor, ConnectivityState

__all__ = ["ConnectivityMonitor", "ConnectivityState"]
