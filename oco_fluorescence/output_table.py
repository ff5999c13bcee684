"""
Append-only CSV table of extracted fluorescence soundings.
"""

import csv
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Union

from .logging_utils import OutputSchemaError
from .sounding_extractor import RECORD_COLUMNS, SoundingRecord

logger = logging.getLogger(__name__)


class SoundingTable:
    """
    Persistent comma-separated table of sounding records.

    The header is written once, when the file is first created. Rows are only
    ever appended; existing rows are never rewritten or reordered.

    Attributes:
        path (Path): Location of the CSV file
        columns (List[str]): Fixed column order
    """

    def __init__(self, path: Union[str, Path], columns: Optional[List[str]] = None):
        self.path = Path(path)
        self.columns = list(columns or RECORD_COLUMNS)

    def exists(self) -> bool:
        return self.path.exists() and self.path.stat().st_size > 0

    def read_header(self) -> List[str]:
        with open(self.path, 'r', encoding='utf-8', newline='') as f:
            return next(csv.reader(f), [])

    def _check_schema(self) -> None:
        header = self.read_header()
        if header != self.columns:
            raise OutputSchemaError(
                f"Existing table header does not match the sounding record schema: {self.path}",
                {'found': header, 'expected': self.columns}
            )

    def append_records(self, records: Iterable[SoundingRecord]) -> int:
        """
        Append records to the table, creating it with a header if needed.

        Args:
            records: Sounding records to write, in order

        Returns:
            int: Number of rows appended

        Raises:
            OutputSchemaError: If an existing table has a different header
        """
        records = list(records)
        if not records:
            return 0

        write_header = not self.exists()
        if not write_header:
            self._check_schema()
        else:
            self.path.parent.mkdir(parents=True, exist_ok=True)

        with open(self.path, 'a', encoding='utf-8', newline='') as f:
            writer = csv.DictWriter(f, fieldnames=self.columns)
            if write_header:
                writer.writeheader()
                logger.info(f"Created output table: {self.path}")
            for record in records:
                writer.writerow(record.to_row())

        logger.info(f"Appended {len(records)} rows to {self.path.name}")
        return len(records)


def append_records(records: Iterable[SoundingRecord], table_path: Union[str, Path]) -> int:
    """Append records to the table at table_path."""
    return SoundingTable(table_path).append_records(records)
