"""
Sounding Extraction from OCO-2 IMAP-DOAS Granules

Reads solar-induced fluorescence (SIF) retrievals from OCO-2 Level 2
IMAP-DOAS HDF5 granules for the soundings that fall inside a bounding box.

Scientific Context:
The IMAP-DOAS algorithm retrieves chlorophyll fluorescence in two O2 A-band
windows (757 nm and 771 nm). Each retrieval carries a radiance uncertainty,
a quality flag, and the local daily average cosine of the solar zenith
angle, which is used downstream to scale instantaneous SIF to daily values.

HDF5 Structure:
- SoundingGeometry/sounding_latitude, sounding_longitude, sounding_time_string
- DOASFluorescence/fluorescence_radiance_{757,771}nm_idp (+ _uncert_idp)
- DOASFluorescence/fluorescence_qual_flag_idp
- DOASFluorescence/local_daily_avg_cos_sza_idp
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Union

import h5py
import numpy as np

from .geo_filter import BoundingBox
from .logging_utils import ExtractionError
from .time_utils import parse_sounding_time, decode_time_string, format_measurement_time, format_measurement_date

logger = logging.getLogger(__name__)

LATITUDE_FIELD = 'SoundingGeometry/sounding_latitude'
LONGITUDE_FIELD = 'SoundingGeometry/sounding_longitude'
TIME_FIELD = 'SoundingGeometry/sounding_time_string'

# Output column name -> HDF5 dataset path
FLUORESCENCE_FIELDS = {
    'fluorescence.757': 'DOASFluorescence/fluorescence_radiance_757nm_idp',
    'fluorescence.757.unc': 'DOASFluorescence/fluorescence_radiance_757nm_uncert_idp',
    'fluorescence.771': 'DOASFluorescence/fluorescence_radiance_771nm_idp',
    'fluorescence.771.unc': 'DOASFluorescence/fluorescence_radiance_771nm_uncert_idp',
    'fluorescence.qual.flag': 'DOASFluorescence/fluorescence_qual_flag_idp',
    'cos.sza': 'DOASFluorescence/local_daily_avg_cos_sza_idp',
}

RECORD_COLUMNS = [
    'file.name',
    'file.url',
    'measurement.lat',
    'measurement.lon',
    'measurement.time.raw',
    'fluorescence.757',
    'fluorescence.757.unc',
    'fluorescence.771',
    'fluorescence.771.unc',
    'fluorescence.qual.flag',
    'cos.sza',
    'measurement.time',
    'measurement.date',
]


@dataclass(frozen=True)
class SoundingRecord:
    """One in-box sounding with its fluorescence retrieval."""
    file_name: str
    file_url: str
    latitude: float
    longitude: float
    time_raw: str
    fluorescence_757: float
    fluorescence_757_unc: float
    fluorescence_771: float
    fluorescence_771_unc: float
    quality_flag: int
    cos_sza: float
    measurement_time: datetime

    @property
    def measurement_date(self) -> str:
        return format_measurement_date(self.measurement_time)

    def to_row(self) -> Dict[str, Any]:
        """Table row keyed by output column name."""
        return {
            'file.name': self.file_name,
            'file.url': self.file_url,
            'measurement.lat': self.latitude,
            'measurement.lon': self.longitude,
            'measurement.time.raw': self.time_raw,
            'fluorescence.757': self.fluorescence_757,
            'fluorescence.757.unc': self.fluorescence_757_unc,
            'fluorescence.771': self.fluorescence_771,
            'fluorescence.771.unc': self.fluorescence_771_unc,
            'fluorescence.qual.flag': self.quality_flag,
            'cos.sza': self.cos_sza,
            'measurement.time': format_measurement_time(self.measurement_time),
            'measurement.date': self.measurement_date,
        }


class HDF5SoundingReader:
    """Reads whole datasets from an HDF5 granule by path."""

    def read(self, path: Union[str, Path], field_path: str) -> np.ndarray:
        """
        Read one dataset.

        Raises:
            ExtractionError: If the file cannot be opened or the field is missing
        """
        try:
            with h5py.File(path, 'r') as hf:
                return np.array(hf[field_path])
        except KeyError as e:
            raise ExtractionError(
                f"Field not found in granule: {field_path}",
                {'path': str(path), 'field': field_path}
            ) from e
        except OSError as e:
            raise ExtractionError(
                f"Unable to read granule: {e}",
                {'path': str(path), 'field': field_path}
            ) from e


class SoundingExtractor:
    """
    Pull in-box fluorescence soundings out of a downloaded granule.

    Attributes:
        bounding_box (BoundingBox): Region of interest
        reader: Object exposing read(path, field_path) -> array
    """

    def __init__(self, bounding_box: BoundingBox, reader=None):
        self.bounding_box = bounding_box
        self.reader = reader or HDF5SoundingReader()

    def _read_selected(self, path, field_path: str, indices: np.ndarray, sounding_count: int) -> np.ndarray:
        values = np.asarray(self.reader.read(path, field_path)).reshape(-1)
        if values.size != sounding_count:
            raise ExtractionError(
                f"Field {field_path} has {values.size} values, expected {sounding_count}",
                {'path': str(path), 'field': field_path}
            )
        return values[indices]

    def extract(self, path: Union[str, Path], file_name: str, file_url: str) -> List[SoundingRecord]:
        """
        Extract records for soundings inside the bounding box.

        Only latitude and longitude are read when no sounding is in the box.

        Args:
            path: Local path of the downloaded granule
            file_name: Granule name as listed by the archive
            file_url: Remote URL the granule was downloaded from

        Returns:
            List[SoundingRecord]: One record per in-box sounding, in file order

        Raises:
            ExtractionError: If a field is missing or malformed
        """
        latitude = np.asarray(self.reader.read(path, LATITUDE_FIELD)).reshape(-1)
        longitude = np.asarray(self.reader.read(path, LONGITUDE_FIELD)).reshape(-1)

        try:
            indices = self.bounding_box.select_indices(latitude, longitude)
        except ValueError as e:
            raise ExtractionError(str(e), {'path': str(path)}) from e

        if indices.size == 0:
            logger.info(f"No coordinates in bounding box for {file_name}. Moving to next file")
            return []

        sounding_count = latitude.size
        raw_times = self._read_selected(path, TIME_FIELD, indices, sounding_count)
        fields = {
            column: self._read_selected(path, field_path, indices, sounding_count)
            for column, field_path in FLUORESCENCE_FIELDS.items()
        }

        records = []
        for position, index in enumerate(indices):
            try:
                time_raw = decode_time_string(raw_times[position])
                records.append(SoundingRecord(
                    file_name=file_name,
                    file_url=file_url,
                    latitude=float(latitude[index]),
                    longitude=float(longitude[index]),
                    time_raw=time_raw,
                    fluorescence_757=float(fields['fluorescence.757'][position]),
                    fluorescence_757_unc=float(fields['fluorescence.757.unc'][position]),
                    fluorescence_771=float(fields['fluorescence.771'][position]),
                    fluorescence_771_unc=float(fields['fluorescence.771.unc'][position]),
                    quality_flag=int(fields['fluorescence.qual.flag'][position]),
                    cos_sza=float(fields['cos.sza'][position]),
                    measurement_time=parse_sounding_time(time_raw),
                ))
            except (ValueError, TypeError, UnicodeDecodeError) as e:
                raise ExtractionError(
                    f"Malformed sounding {int(index)} in {file_name}: {e}",
                    {'path': str(path), 'sounding_index': int(index)}
                ) from e

        logger.info(f"Extracted {len(records)} soundings from {file_name}")
        return records
