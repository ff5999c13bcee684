"""
Tests for the OCO-2 download orchestrator.

The archive is replaced by a mock HTTP session: listing requests return a
contents page, granule requests stream the bytes of HDF5 files written by the
granule_factory fixture.
"""

import csv
import shutil
import tempfile
from pathlib import Path
from unittest.mock import MagicMock, call, patch

import numpy as np
import pytest
import requests

from oco_fluorescence.config_manager import OCOConfig
from oco_fluorescence.downloaders.oco_downloader import (
    DATE_EXISTS,
    UNABLE_TO_DOWNLOAD,
    URL_EXISTS,
    OCODownloader,
)
from oco_fluorescence.geo_filter import BoundingBox
from oco_fluorescence.ledger import FileLedgerStore, LedgerKind
from oco_fluorescence.listing import RemoteListingResolver
from oco_fluorescence.logging_utils import DataDownloadError
from oco_fluorescence.output_table import SoundingTable
from conftest import granule_values, write_granule

LISTING_URL = 'http://oco2.gesdisc.eosdis.nasa.gov/opendap/OCO2_L2_IMAPDOAS.7r/2020/016/contents.html'
BASE_URL = LISTING_URL[:-len('/contents.html')]


def listing_page(filenames):
    rows = ''.join(f'<tr><td>{name}</td><td>-</td></tr>' for name in filenames)
    return f'<html><body><table><tr><th>Name</th></tr>{rows}</table></body></html>'


class FakeArchive:
    """Mock requests.Session serving a listing and granule files by URL."""

    def __init__(self):
        self.listings = {}
        self.granules = {}
        self.failing = set()
        self.session = MagicMock()
        self.session.get.side_effect = self._get

    def requested_urls(self):
        return [c.args[0] for c in self.session.get.call_args_list]

    def _get(self, url, **kwargs):
        if url in self.failing:
            raise requests.ConnectionError(f"unreachable: {url}")

        response = MagicMock()
        response.__enter__.return_value = response
        response.__exit__.return_value = False
        response.raise_for_status.return_value = None

        if url in self.listings:
            response.text = listing_page(self.listings[url])
        elif url in self.granules:
            content = Path(self.granules[url]).read_bytes()
            response.iter_content.return_value = [content]
        else:
            response.raise_for_status.side_effect = requests.HTTPError(f"404 Not Found: {url}")
        return response


class TestOCODownloader:
    """State machine per date"""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.fixtures = Path(self.temp_dir) / 'fixtures'
        self.fixtures.mkdir()
        self.archive = FakeArchive()
        self.downloader = OCODownloader(
            working_directory=str(Path(self.temp_dir) / 'work'),
            session=self.archive.session,
        )

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def add_granule(self, name, latitude, longitude, **kwargs):
        path = write_granule(self.fixtures / name, latitude, longitude, **kwargs)
        self.archive.granules[f'{BASE_URL}/{name}'] = path
        return path

    def table_rows(self):
        with open(self.downloader.table.path, newline='') as f:
            return list(csv.DictReader(f))

    def test_three_of_hundred_soundings_appended(self, hundred_soundings_three_in_box):
        latitude, longitude, in_box = hundred_soundings_three_in_box
        self.add_granule('oco2_a.h5', latitude, longitude)
        self.archive.listings[LISTING_URL] = ['oco2_a.h5']
        expected = granule_values(100)

        outcome = self.downloader.download_date('2020-01-15')

        assert outcome is None
        rows = self.table_rows()
        assert len(rows) == 3
        for row, index in zip(rows, in_box):
            assert row['file.name'] == 'oco2_a.h5'
            assert row['file.url'] == f'{BASE_URL}/oco2_a.h5'
            assert float(row['fluorescence.757']) == pytest.approx(expected['fluorescence.757'][index])
            assert float(row['fluorescence.757.unc']) == pytest.approx(expected['fluorescence.757.unc'][index])
            assert float(row['fluorescence.771']) == pytest.approx(expected['fluorescence.771'][index])
            assert float(row['fluorescence.771.unc']) == pytest.approx(expected['fluorescence.771.unc'][index])

        stats = self.downloader.processing_logger.processing_stats
        assert stats['records_written'] == 3
        assert stats['files_downloaded'] == 1

    def test_ledgers_written_for_processed_date(self):
        self.add_granule('oco2_a.h5', [46.0], [-90.0])
        self.archive.listings[LISTING_URL] = ['oco2_a.h5']

        self.downloader.download_date('2020-01-15')

        ledger = self.downloader.ledger
        assert ledger.entries(LedgerKind.DATE) == ['2020-01-15']
        assert ledger.entries(LedgerKind.LISTING) == [LISTING_URL]
        assert ledger.entries(LedgerKind.FILE) == ['oco2_a.h5']

    def test_date_exists_performs_no_network_io(self):
        self.downloader.ledger.mark_seen(LedgerKind.DATE, '2020-01-15')

        assert self.downloader.download_date('2020-01-15') == DATE_EXISTS
        assert self.archive.session.get.call_count == 0
        assert self.downloader.ledger.entries(LedgerKind.DATE) == ['2020-01-15']
        assert self.downloader.ledger.entries(LedgerKind.LISTING) == []

    def test_date_exists_by_substring(self):
        self.downloader.ledger.mark_seen(LedgerKind.DATE, 'run of 2020-01-15 interrupted')
        assert self.downloader.download_date('2020-01-15') == DATE_EXISTS

    def test_url_exists_performs_no_downloads(self):
        self.downloader.ledger.mark_seen(LedgerKind.LISTING, LISTING_URL)

        assert self.downloader.download_date('2020-01-15') == URL_EXISTS
        assert self.archive.session.get.call_count == 0
        assert self.downloader.ledger.entries(LedgerKind.DATE) == ['2020-01-15']

    def test_unreachable_archive(self):
        self.archive.failing.add(LISTING_URL)

        assert self.downloader.download_date('2020-01-15') == UNABLE_TO_DOWNLOAD

        ledger = self.downloader.ledger
        assert ledger.has_seen(LedgerKind.DATE, '2020-01-15')
        assert ledger.has_seen(LedgerKind.LISTING, LISTING_URL)
        assert ledger.entries(LedgerKind.FILE) == []
        assert not self.downloader.table.path.exists()

        # The date-URL pair is never retried
        assert self.downloader.download_date('2020-01-15') == DATE_EXISTS
        assert self.downloader.download_date('2020-01-15', check_date=False) == URL_EXISTS

    def test_seen_file_is_skipped(self):
        self.add_granule('oco2_a.h5', [46.0], [-90.0])
        self.add_granule('oco2_b.h5', [46.5], [-90.5])
        self.archive.listings[LISTING_URL] = ['oco2_a.h5', 'oco2_b.h5']
        self.downloader.ledger.mark_seen(LedgerKind.FILE, 'oco2_a.h5')

        self.downloader.download_date('2020-01-15')

        assert f'{BASE_URL}/oco2_a.h5' not in self.archive.requested_urls()
        assert [row['file.name'] for row in self.table_rows()] == ['oco2_b.h5']
        assert self.downloader.processing_logger.processing_stats['files_skipped'] == 1

    def test_failed_download_does_not_abort_date(self):
        self.add_granule('oco2_b.h5', [46.5], [-90.5])
        self.archive.listings[LISTING_URL] = ['oco2_a.h5', 'oco2_b.h5']
        self.archive.failing.add(f'{BASE_URL}/oco2_a.h5')

        outcome = self.downloader.download_date('2020-01-15')

        assert outcome is None
        assert [row['file.name'] for row in self.table_rows()] == ['oco2_b.h5']
        # Marked before the attempt, so never retried
        assert self.downloader.ledger.has_seen(LedgerKind.FILE, 'oco2_a.h5')
        assert self.downloader.processing_logger.processing_stats['files_failed'] == 1

    def test_failed_extraction_does_not_abort_date(self):
        self.add_granule('oco2_a.h5', [46.0], [-90.0], times=['corrupt'])
        self.add_granule('oco2_b.h5', [46.5], [-90.5])
        self.archive.listings[LISTING_URL] = ['oco2_a.h5', 'oco2_b.h5']

        self.downloader.download_date('2020-01-15')

        assert [row['file.name'] for row in self.table_rows()] == ['oco2_b.h5']

    def test_files_processed_in_listing_order(self):
        for name in ['oco2_c.h5', 'oco2_a.h5', 'oco2_b.h5']:
            self.add_granule(name, [46.0], [-90.0])
        self.archive.listings[LISTING_URL] = ['oco2_c.h5', 'oco2_a.h5', 'oco2_b.h5']

        self.downloader.download_date('2020-01-15')

        assert [row['file.name'] for row in self.table_rows()] == ['oco2_c.h5', 'oco2_a.h5', 'oco2_b.h5']

    def test_second_run_adds_no_rows(self):
        self.add_granule('oco2_a.h5', [46.0, 46.1], [-90.0, -90.1])
        self.archive.listings[LISTING_URL] = ['oco2_a.h5']

        self.downloader.download_date('2020-01-15')
        rows_after_first = self.table_rows()

        assert self.downloader.download_date('2020-01-15') == DATE_EXISTS
        assert self.downloader.download_date('2020-01-15', check_date=False, check_url=False) is None
        assert self.table_rows() == rows_after_first

    def test_write_disabled(self):
        self.add_granule('oco2_a.h5', [46.0], [-90.0])
        self.archive.listings[LISTING_URL] = ['oco2_a.h5']

        assert self.downloader.download_date('2020-01-15', write=False) is None

        assert not self.downloader.table.path.exists()
        assert self.downloader.ledger.has_seen(LedgerKind.FILE, 'oco2_a.h5')

    def test_no_in_box_soundings_writes_nothing(self):
        self.add_granule('oco2_a.h5', [10.0, 20.0], [10.0, 20.0])
        self.archive.listings[LISTING_URL] = ['oco2_a.h5']

        assert self.downloader.download_date('2020-01-15') is None
        assert not self.downloader.table.path.exists()

    def test_scratch_file_is_reused(self):
        self.add_granule('oco2_a.h5', [46.0], [-90.0])
        self.add_granule('oco2_b.h5', [10.0], [10.0])
        self.archive.listings[LISTING_URL] = ['oco2_a.h5', 'oco2_b.h5']

        self.downloader.download_date('2020-01-15')

        work = Path(self.temp_dir) / 'work'
        assert self.downloader.scratch_path == work / 'current.h5'
        assert (work / 'current.h5').read_bytes() == (self.fixtures / 'oco2_b.h5').read_bytes()

    def test_ledger_failure_is_fatal(self):
        ledger = MagicMock()
        ledger.has_seen.return_value = False
        ledger.mark_seen.side_effect = PermissionError("read-only ledger")
        downloader = OCODownloader(
            working_directory=str(Path(self.temp_dir) / 'work'),
            ledger=ledger,
            session=self.archive.session,
        )

        with pytest.raises(PermissionError):
            downloader.download_date('2020-01-15')
        assert self.archive.session.get.call_count == 0

    def test_scratch_write_failure_is_fatal(self):
        """Local disk errors abort the run instead of skipping files"""
        self.add_granule('oco2_a.h5', [46.0], [-90.0])
        self.add_granule('oco2_b.h5', [46.5], [-90.5])
        self.archive.listings[LISTING_URL] = ['oco2_a.h5', 'oco2_b.h5']
        self.downloader.scratch_path.mkdir(parents=True)

        with pytest.raises(OSError):
            self.downloader.download_date('2020-01-15')

        assert self.downloader.ledger.entries(LedgerKind.FILE) == ['oco2_a.h5']
        assert self.downloader.processing_logger.processing_stats['files_failed'] == 0

    def test_folder_url_in_ledger_counts_as_seen(self):
        """Ledgers that recorded the day folder without contents.html still match"""
        self.downloader.ledger.mark_seen(LedgerKind.LISTING, BASE_URL)

        assert self.downloader.download_date('2020-01-15') == URL_EXISTS
        assert self.archive.session.get.call_count == 0

    def test_neighbouring_day_folder_is_not_seen(self):
        self.downloader.ledger.mark_seen(LedgerKind.LISTING, BASE_URL.replace('/016', '/015'))

        assert self.downloader.download_date('2020-01-15') == UNABLE_TO_DOWNLOAD


class TestDownloadFile:
    """Streamed granule download with timeout and retries"""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.session = MagicMock()
        self.downloader = OCODownloader(
            working_directory=self.temp_dir,
            session=self.session,
            timeout=30,
            retry_attempts=2,
            retry_delay=5,
        )
        self.destination = Path(self.temp_dir) / 'current.h5'

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    @staticmethod
    def make_response(content):
        response = MagicMock()
        response.__enter__.return_value = response
        response.__exit__.return_value = False
        response.iter_content.return_value = [content]
        return response

    def test_request_carries_timeout(self):
        self.session.get.return_value = self.make_response(b'granule bytes')

        self.downloader.download_file(f'{BASE_URL}/oco2_a.h5', self.destination)

        self.session.get.assert_called_once_with(f'{BASE_URL}/oco2_a.h5', stream=True, timeout=30)
        assert self.destination.read_bytes() == b'granule bytes'

    @patch('oco_fluorescence.downloaders.base.time.sleep')
    def test_retries_with_exponential_backoff(self, mock_sleep):
        self.session.get.side_effect = requests.ConnectionError("reset by peer")

        with pytest.raises(DataDownloadError) as excinfo:
            self.downloader.download_file(f'{BASE_URL}/oco2_a.h5', self.destination)

        assert self.session.get.call_count == 3
        assert mock_sleep.call_args_list == [call(5), call(10)]
        assert excinfo.value.context['url'] == f'{BASE_URL}/oco2_a.h5'

    @patch('oco_fluorescence.downloaders.base.time.sleep')
    def test_recovers_after_transient_failure(self, mock_sleep):
        self.session.get.side_effect = [
            requests.Timeout("read timed out"),
            self.make_response(b'second attempt'),
        ]

        self.downloader.download_file(f'{BASE_URL}/oco2_a.h5', self.destination)

        assert self.destination.read_bytes() == b'second attempt'
        assert mock_sleep.call_args_list == [call(5)]

    @patch('oco_fluorescence.downloaders.base.time.sleep')
    def test_no_retries_by_default(self, mock_sleep):
        self.session.get.side_effect = requests.ConnectionError("refused")
        downloader = OCODownloader(working_directory=self.temp_dir, session=self.session)

        with pytest.raises(DataDownloadError):
            downloader.download_file(f'{BASE_URL}/oco2_a.h5', self.destination)

        assert self.session.get.call_count == 1
        mock_sleep.assert_not_called()


class TestFromConfig:
    """Collaborators wired from OCOConfig"""

    def test_non_default_settings(self, tmp_path):
        config = OCOConfig(cli_args={
            'processing': {'working_directory': str(tmp_path / 'work')},
            'archive': {
                'base_url': 'http://mirror.example.org/opendap',
                'product': 'OCO2_L2_IMAPDOAS.8r',
                'day_of_year_offset': 0,
                'request_timeout': 45,
                'retry_attempts': 3,
                'retry_delay': 2,
            },
            'bounding_box': {'lat_min': 30, 'lat_max': 35, 'lon_min': -100, 'lon_max': -95},
            'pipeline': {
                'start_date': '2019-06-01',
                'date_ledger': 'dates.txt',
                'url_ledger': 'urls.txt',
                'file_ledger': 'files.txt',
                'output_table': 'out/sif.csv',
                'scratch_file': 'scratch/granule.h5',
            },
        })
        session = MagicMock()

        downloader = OCODownloader.from_config(config, session=session)

        work = tmp_path / 'work'
        assert downloader.working_directory == work
        assert downloader.ledger.paths == {
            LedgerKind.DATE: work / 'dates.txt',
            LedgerKind.LISTING: work / 'urls.txt',
            LedgerKind.FILE: work / 'files.txt',
        }
        assert downloader.bounding_box == BoundingBox(30.0, 35.0, -100.0, -95.0)
        assert downloader.extractor.bounding_box == downloader.bounding_box
        assert downloader.resolver.resolve_listing_url('2020-01-15') == (
            'http://mirror.example.org/opendap/OCO2_L2_IMAPDOAS.8r/2020/015/contents.html'
        )
        assert downloader.resolver.timeout == 45
        assert downloader.resolver.session is session
        assert downloader.session is session
        assert downloader.table.path == work / 'out' / 'sif.csv'
        assert downloader.scratch_path == work / 'scratch' / 'granule.h5'
        assert downloader.start_date.isoformat() == '2019-06-01'
        assert (downloader.timeout, downloader.retry_attempts, downloader.retry_delay) == (45, 3, 2)

    def test_absolute_output_table(self, tmp_path):
        output = tmp_path / 'elsewhere' / 'sif.csv'
        config = OCOConfig(cli_args={
            'processing': {'working_directory': str(tmp_path / 'work')},
            'pipeline': {'output_table': str(output)},
        })

        downloader = OCODownloader.from_config(config, session=MagicMock())

        assert downloader.table.path == output
        assert downloader.scratch_path == tmp_path / 'work' / 'current.h5'


class TestDownloadRange:
    """Backward walk over dates"""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.archive = FakeArchive()
        self.downloader = OCODownloader(
            working_directory=self.temp_dir,
            session=self.archive.session,
            start_date='2020-01-12',
        )

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_descending_order_excluding_start(self):
        results = self.downloader.download_range(end_date='2020-01-15', show_progress=False)

        assert list(results.keys()) == ['2020-01-15', '2020-01-14', '2020-01-13']
        assert set(results.values()) == {UNABLE_TO_DOWNLOAD}
        assert self.downloader.ledger.entries(LedgerKind.DATE) == ['2020-01-15', '2020-01-14', '2020-01-13']

    def test_rerun_skips_all_dates(self):
        self.downloader.download_range(end_date='2020-01-15', show_progress=False)

        results = self.downloader.download_range(end_date='2020-01-15', show_progress=False)

        assert set(results.values()) == {DATE_EXISTS}

    def test_flags_are_forwarded(self):
        self.downloader.download_range(end_date='2020-01-14', show_progress=False)

        results = self.downloader.download_range(
            end_date='2020-01-14', show_progress=False, check_date=False
        )

        assert set(results.values()) == {URL_EXISTS}


def test_injected_collaborators(tmp_path):
    """Ledger, resolver and table can be supplied explicitly"""
    ledger = FileLedgerStore(tmp_path / 'state')
    resolver = RemoteListingResolver(base_url='http://mirror/opendap', session=MagicMock())
    table = SoundingTable(tmp_path / 'out' / 'sif.csv')

    downloader = OCODownloader(str(tmp_path), ledger=ledger, resolver=resolver, table=table)

    assert downloader.ledger is ledger
    assert downloader.resolver is resolver
    assert downloader.table is table
    assert np.isclose(downloader.bounding_box.lat_min, 45.0)
