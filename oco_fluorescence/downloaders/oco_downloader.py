"""
OCO-2 IMAP-DOAS Fluorescence Downloader

This module walks the OCO-2 Level 2 IMAP-DOAS archive day by day, downloads
each granule once, keeps the soundings inside a bounding box, and appends
their fluorescence retrievals to a CSV table.

Per date the downloader moves through:

    date check -> listing resolve -> listing check -> listing fetch
        -> per file: file check -> download -> filter -> extract -> append

Every unit is recorded in the ledger as soon as its processing starts, before
any network I/O. A re-run therefore never repeats a date, listing, or file,
including ones whose earlier attempt failed.

Usage:
    downloader = OCODownloader.from_config(OCOConfig())
    outcome = downloader.download_date(date(2020, 1, 15))
    results = downloader.download_range()
"""

import logging
from datetime import date
from pathlib import Path
from typing import Any, Dict, Optional, Union

import requests
from tqdm import tqdm

from .base import BaseDownloader
from ..geo_filter import BoundingBox
from ..ledger import FileLedgerStore, LedgerKind, LedgerStore
from ..listing import RemoteListingResolver
from ..logging_utils import DataDownloadError, ExtractionError, ProcessingLogger, error_context
from ..output_table import SoundingTable
from ..sounding_extractor import SoundingExtractor
from ..time_utils import count_dates_descending, iterate_dates_descending, to_date, utc_today

logger = logging.getLogger(__name__)

DATE_EXISTS = "Date exists"
URL_EXISTS = "URL exists"
UNABLE_TO_DOWNLOAD = "Unable to download"

# First day of OCO-2 science data
OCO2_START_DATE = '2014-09-07'


class OCODownloader(BaseDownloader):
    """
    Idempotent downloader for OCO-2 fluorescence soundings.

    Attributes:
        ledger (LedgerStore): Record of dates, listings and files already started
        resolver (RemoteListingResolver): Listing URL template and parser
        extractor (SoundingExtractor): In-box sounding extraction
        table (SoundingTable): Output table
        scratch_path (Path): Reused local path for the current granule
        start_date (date): Exclusive lower bound of the backward walk
    """

    def __init__(
        self,
        working_directory: str,
        bounding_box: Optional[BoundingBox] = None,
        ledger: Optional[LedgerStore] = None,
        resolver: Optional[RemoteListingResolver] = None,
        extractor: Optional[SoundingExtractor] = None,
        table: Optional[SoundingTable] = None,
        scratch_file: str = 'current.h5',
        output_table: str = 'fluorescence.csv',
        start_date: Union[str, date] = OCO2_START_DATE,
        processing_logger: Optional[ProcessingLogger] = None,
        timeout: float = 120,
        retry_attempts: int = 0,
        retry_delay: float = 5,
        chunk_size: int = 1024 * 1024,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize OCO-2 downloader.

        Collaborators not supplied are built with defaults rooted at
        working_directory.

        Args:
            working_directory (str): Directory for ledgers, table and scratch file
            bounding_box (Optional[BoundingBox]): Region of interest
            ledger (Optional[LedgerStore]): Processing ledger
            resolver (Optional[RemoteListingResolver]): Listing resolver
            extractor (Optional[SoundingExtractor]): Sounding extractor
            table (Optional[SoundingTable]): Output table
            scratch_file (str): Granule download path. Default: current.h5
            output_table (str): Table path when table is not given
            start_date: Exclusive lower bound of download_range
            processing_logger (Optional[ProcessingLogger]): Run statistics
        """

        super().__init__(working_directory, timeout, retry_attempts, retry_delay, chunk_size, session)

        self.bounding_box = bounding_box or BoundingBox()
        self.ledger = ledger or FileLedgerStore(self.working_directory)
        self.resolver = resolver or RemoteListingResolver(timeout=timeout, session=self.session)
        self.extractor = extractor or SoundingExtractor(self.bounding_box)
        self.table = table or SoundingTable(self.resolve_path(output_table))
        self.scratch_path = self.resolve_path(scratch_file)
        self.start_date = to_date(start_date)
        self.processing_logger = processing_logger or ProcessingLogger()

    @classmethod
    def from_config(cls, config, session: Optional[requests.Session] = None) -> 'OCODownloader':
        """
        Build a downloader from an OCOConfig.

        Args:
            config: Loaded OCOConfig instance
            session: Optional shared HTTP session
        """
        working_directory = Path(config.get('processing.working_directory'))
        archive = config.get_archive_config()
        pipeline = config.get_pipeline_config()
        session = session or requests.Session()

        def resolve(path):
            path = Path(path)
            return path if path.is_absolute() else working_directory / path

        bounding_box = BoundingBox.from_config(config.get_bounding_box_config())
        ledger = FileLedgerStore(working_directory, {
            LedgerKind.DATE: pipeline['date_ledger'],
            LedgerKind.LISTING: pipeline['url_ledger'],
            LedgerKind.FILE: pipeline['file_ledger'],
        })
        resolver = RemoteListingResolver(
            base_url=archive['base_url'],
            product=archive['product'],
            day_of_year_offset=archive['day_of_year_offset'],
            filename_prefix=archive['filename_prefix'],
            timeout=archive['request_timeout'],
            session=session,
        )

        return cls(
            working_directory=str(working_directory),
            bounding_box=bounding_box,
            ledger=ledger,
            resolver=resolver,
            table=SoundingTable(resolve(pipeline['output_table'])),
            scratch_file=pipeline['scratch_file'],
            start_date=pipeline['start_date'],
            timeout=archive['request_timeout'],
            retry_attempts=archive['retry_attempts'],
            retry_delay=archive['retry_delay'],
            chunk_size=archive['chunk_size'],
            session=session,
        )

    def download_date(
        self,
        day: Union[str, date],
        write: bool = True,
        check_date: bool = True,
        check_url: bool = True,
        check_file: bool = True,
    ) -> Optional[str]:
        """
        Download and process all granules for one date.

        Args:
            day: Date to process
            write (bool): Append extracted records to the output table
            check_date (bool): Skip the date if already in the date ledger
            check_url (bool): Skip the date if its listing URL is already recorded
            check_file (bool): Skip granules already in the file ledger

        Returns:
            Optional[str]: "Date exists", "URL exists", "Unable to download",
            or None when the listing was processed (zero or more rows written)

        Raises:
            OSError: Ledger or table I/O failures are not handled
            OutputSchemaError: If the output table header is incompatible
        """
        day = to_date(day)
        date_token = day.isoformat()
        stats = self.processing_logger

        if check_date and self.ledger.has_seen(LedgerKind.DATE, date_token):
            logger.info(f"Date {date_token} already checked. Skipping")
            stats.increment('dates_skipped')
            return DATE_EXISTS
        self.ledger.mark_seen(LedgerKind.DATE, date_token)

        listing_url = self.resolver.resolve_listing_url(day)
        # The folder URL is a substring of the listing URL, so this matches
        # entries recorded either as .../DOY or as .../DOY/contents.html
        folder_url = self.resolver.resolve_listing_base_url(day)
        if check_url and self.ledger.has_seen(LedgerKind.LISTING, folder_url):
            logger.info(f"Listing {listing_url} already checked. Skipping")
            stats.increment('dates_skipped')
            return URL_EXISTS
        self.ledger.mark_seen(LedgerKind.LISTING, listing_url)

        filenames = self.resolver.fetch_listing(listing_url)
        if filenames is None:
            stats.increment('listings_unavailable')
            return UNABLE_TO_DOWNLOAD

        stats.increment('dates_processed')
        for filename in filenames:
            self._process_file(filename, listing_url, write, check_file)

        return None

    def _process_file(self, filename: str, listing_url: str, write: bool, check_file: bool) -> int:
        """Download, filter, extract and append one granule. Returns rows written."""
        stats = self.processing_logger

        if check_file and self.ledger.has_seen(LedgerKind.FILE, filename):
            logger.info(f"File {filename} already checked. Moving on")
            stats.increment('files_skipped')
            return 0
        self.ledger.mark_seen(LedgerKind.FILE, filename)

        file_url = self.resolver.file_url(listing_url, filename)

        # Only network failures become DataDownloadError; scratch-file OSError propagates
        try:
            self.download_file(file_url, self.scratch_path)
        except DataDownloadError as e:
            stats.log_processing_error('DataDownloadError', str(e), {'file_name': filename, **e.context})
            logger.warning(f"Skipping {filename} after failure")
            stats.increment('files_failed')
            return 0
        stats.increment('files_downloaded')

        try:
            with error_context("extracting soundings", stats, file_name=filename):
                records = self.extractor.extract(self.scratch_path, filename, file_url)
        except ExtractionError:
            logger.warning(f"Skipping {filename} after failure")
            stats.increment('files_failed')
            return 0

        if not records:
            return 0

        if not write:
            logger.info(f"Write disabled; {len(records)} soundings from {filename} not stored")
            return 0

        written = self.table.append_records(records)
        stats.increment('records_written', written)
        return written

    def download_range(
        self,
        end_date: Optional[Union[str, date]] = None,
        start_date: Optional[Union[str, date]] = None,
        show_progress: bool = True,
        **flags: Any,
    ) -> Dict[str, Optional[str]]:
        """
        Process dates backwards from end_date while strictly after start_date.

        Args:
            end_date: First (latest) date to process. Default: today (UTC)
            start_date: Exclusive lower bound. Default: the configured start date
            show_progress (bool): Display a progress bar
            **flags: write/check_date/check_url/check_file passed to download_date

        Returns:
            Dict[str, Optional[str]]: ISO date -> outcome of download_date
        """
        end_date = to_date(end_date) if end_date is not None else utc_today()
        start_date = to_date(start_date) if start_date is not None else self.start_date

        self.processing_logger.log_processing_start({
            'end_date': end_date.isoformat(),
            'start_date': start_date.isoformat(),
            'bounding_box': self.bounding_box,
            'working_directory': self.working_directory,
            **flags,
        })

        results = {}
        progress_bar = None
        if show_progress:
            progress_bar = tqdm(
                total=count_dates_descending(end_date, start_date),
                desc="OCO-2 dates",
                unit="day",
            )

        try:
            for day in iterate_dates_descending(end_date, start_date):
                logger.info(f"Processing {day.isoformat()}")
                results[day.isoformat()] = self.download_date(day, **flags)
                if progress_bar:
                    progress_bar.update(1)
        finally:
            if progress_bar:
                progress_bar.close()

        self.processing_logger.log_processing_complete()
        return results
