"""
Providers package - Environmental data source implementations.
"""

from data_sources.providers.http_snapshot import HttpSnapshotSource
from data_sources.providers.open_meteo import OpenMeteoSource
from data_sources.providers.simulated import SimulatedDefaultSource


__all__ = [
    "HttpSnapshotSource",
    "OpenMeteoSource",
    "SimulatedDefaultSource",
]
