"""
Geographic Filtering of OCO-2 Soundings

Selects soundings whose footprint centre lies strictly inside a fixed
latitude/longitude rectangle. Points exactly on an edge are excluded.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BoundingBox:
    """
    Open rectangle in geographic coordinates (decimal degrees).

    Attributes:
        lat_min (float): Southern bound (exclusive)
        lat_max (float): Northern bound (exclusive)
        lon_min (float): Western bound (exclusive)
        lon_max (float): Eastern bound (exclusive)
    """
    lat_min: float = 45.0
    lat_max: float = 47.0
    lon_min: float = -91.0
    lon_max: float = -89.0

    def __post_init__(self):
        if not (-90 <= self.lat_min < self.lat_max <= 90):
            raise ValueError(
                f"Invalid latitude bounds. Must be -90 <= lat_min < lat_max <= 90. "
                f"Got: ({self.lat_min}, {self.lat_max})"
            )
        if not (-180 <= self.lon_min < self.lon_max <= 180):
            raise ValueError(
                f"Invalid longitude bounds. Must be -180 <= lon_min < lon_max <= 180. "
                f"Got: ({self.lon_min}, {self.lon_max})"
            )

    @classmethod
    def from_config(cls, bbox_config: Dict[str, Any]) -> 'BoundingBox':
        return cls(
            lat_min=float(bbox_config['lat_min']),
            lat_max=float(bbox_config['lat_max']),
            lon_min=float(bbox_config['lon_min']),
            lon_max=float(bbox_config['lon_max']),
        )

    def contains(self, lat: float, lon: float) -> bool:
        """Scalar open-interval test."""
        return bool(self.lat_min < lat < self.lat_max and self.lon_min < lon < self.lon_max)

    def mask(self, latitude: np.ndarray, longitude: np.ndarray) -> np.ndarray:
        """
        Elementwise open-interval test over parallel coordinate arrays.

        Args:
            latitude: Sounding latitudes
            longitude: Sounding longitudes, same shape as latitude

        Returns:
            np.ndarray: Boolean mask, True where the sounding is inside the box

        Raises:
            ValueError: If the arrays differ in shape
        """
        latitude = np.asarray(latitude)
        longitude = np.asarray(longitude)

        if latitude.shape != longitude.shape:
            raise ValueError(
                f"Latitude and longitude arrays must have equal shape. "
                f"Got: {latitude.shape} and {longitude.shape}"
            )

        return (
            (latitude > self.lat_min) & (latitude < self.lat_max)
            & (longitude > self.lon_min) & (longitude < self.lon_max)
        )

    def select_indices(self, latitude: np.ndarray, longitude: np.ndarray) -> np.ndarray:
        """
        Return the indices of soundings inside the box, in ascending order.

        NaN coordinates never satisfy the predicate.
        """
        indices = np.flatnonzero(self.mask(latitude, longitude))
        logger.debug(f"{indices.size} of {np.asarray(latitude).size} soundings inside {self}")
        return indices
