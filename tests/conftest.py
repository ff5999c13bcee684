"""
Shared fixtures: synthetic OCO-2 IMAP-DOAS granules written with h5py.
"""

import h5py
import numpy as np
import pytest

from oco_fluorescence.sounding_extractor import (
    FLUORESCENCE_FIELDS,
    LATITUDE_FIELD,
    LONGITUDE_FIELD,
    TIME_FIELD,
)


def granule_values(count):
    """Deterministic per-sounding field values, distinct per field and index."""
    index = np.arange(count, dtype=np.float64)
    return {
        'fluorescence.757': 1.0 + index * 0.01,
        'fluorescence.757.unc': 0.1 + index * 0.001,
        'fluorescence.771': 2.0 + index * 0.01,
        'fluorescence.771.unc': 0.2 + index * 0.001,
        'fluorescence.qual.flag': (np.arange(count) % 3).astype(np.int8),
        'cos.sza': 0.5 + index * 0.001,
    }


def write_granule(path, latitude, longitude, times=None, omit=()):
    """
    Write a minimal IMAP-DOAS granule.

    Args:
        path: Output HDF5 path
        latitude, longitude: Sounding coordinates
        times: Optional sounding time strings (default: one per second on 2020-01-15)
        omit: Dataset paths to leave out
    """
    latitude = np.asarray(latitude, dtype=np.float32)
    longitude = np.asarray(longitude, dtype=np.float32)
    count = latitude.size

    if times is None:
        times = [f"2020-01-15T18:{i // 60 % 60:02d}:{i % 60:02d}.250Z" for i in range(count)]

    datasets = {
        LATITUDE_FIELD: latitude,
        LONGITUDE_FIELD: longitude,
        TIME_FIELD: np.array([t.encode('ascii') for t in times], dtype='S24'),
    }
    for column, values in granule_values(count).items():
        datasets[FLUORESCENCE_FIELDS[column]] = values

    with h5py.File(path, 'w') as hf:
        for field_path, values in datasets.items():
            if field_path not in omit:
                hf.create_dataset(field_path, data=values)

    return path


@pytest.fixture
def granule_factory(tmp_path):
    """Return a callable that writes a granule under tmp_path."""
    def factory(name='granule.h5', **kwargs):
        return write_granule(tmp_path / name, **kwargs)
    return factory


@pytest.fixture
def hundred_soundings_three_in_box():
    """Coordinates for 100 soundings, of which indices 7, 42 and 93 are in the default box."""
    latitude = np.full(100, 30.0)
    longitude = np.full(100, -100.0)
    in_box = [7, 42, 93]
    latitude[in_box] = [45.5, 46.0, 46.9]
    longitude[in_box] = [-90.5, -89.1, -90.9]
    return latitude, longitude, in_box
