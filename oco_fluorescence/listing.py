"""
Remote Listing Resolver for the OCO-2 OPeNDAP Archive

Each day of OCO-2 Level 2 data lives in its own archive folder:

    <archive>/<product>/<year>/<day-of-year>/contents.html

The folder's contents page is an HTML table whose first column names the
granule files. This module computes that URL for a date and turns the page
into the ordered list of candidate sounding files.

References:
- GES DISC OPeNDAP: https://oco2.gesdisc.eosdis.nasa.gov/opendap/
"""

import logging
from datetime import date
from typing import List, Optional, Union

import requests
from bs4 import BeautifulSoup

from .logging_utils import ListingUnavailableError
from .time_utils import archive_year_and_day

logger = logging.getLogger(__name__)

OCO2_ARCHIVE_URL = 'http://oco2.gesdisc.eosdis.nasa.gov/opendap'
OCO2_PRODUCT = 'OCO2_L2_IMAPDOAS.7r'
LISTING_PAGE = 'contents.html'


class RemoteListingResolver:
    """
    Resolve and fetch the daily file listing for OCO-2 granules.

    Attributes:
        base_url (str): Root of the OPeNDAP archive
        product (str): Product collection folder name
        day_of_year_offset (int): Added to the 1-indexed day-of-year
        filename_prefix (str): Case-insensitive prefix of granule names
        timeout (float): HTTP timeout in seconds
    """

    def __init__(
        self,
        base_url: str = OCO2_ARCHIVE_URL,
        product: str = OCO2_PRODUCT,
        day_of_year_offset: int = 1,
        filename_prefix: str = 'oco',
        timeout: float = 120,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.product = product
        self.day_of_year_offset = day_of_year_offset
        self.filename_prefix = filename_prefix.lower()
        self.timeout = timeout
        self.session = session or requests.Session()

    def resolve_listing_base_url(self, day: Union[str, date]) -> str:
        """Folder URL holding the granules for a date."""
        year, doy = archive_year_and_day(day, self.day_of_year_offset)
        return f"{self.base_url}/{self.product}/{year}/{doy}"

    def resolve_listing_url(self, day: Union[str, date]) -> str:
        """
        Listing page URL for a date.

        Example:
            >>> RemoteListingResolver().resolve_listing_url('2020-01-15')
            'http://oco2.gesdisc.eosdis.nasa.gov/opendap/OCO2_L2_IMAPDOAS.7r/2020/016/contents.html'
        """
        return f"{self.resolve_listing_base_url(day)}/{LISTING_PAGE}"

    @staticmethod
    def file_url(listing_url: str, filename: str) -> str:
        """URL of a granule listed on the given listing page."""
        base = listing_url
        if base.endswith(f"/{LISTING_PAGE}"):
            base = base[:-len(LISTING_PAGE) - 1]
        return f"{base}/{filename}"

    def parse_listing(self, html: str) -> List[str]:
        """
        Extract granule names from a listing page.

        Takes the first cell of every row of the first table, keeps entries
        starting with the filename prefix, and drops repeats while keeping
        archive order.

        Raises:
            ListingUnavailableError: If the page contains no table
        """
        soup = BeautifulSoup(html, 'html.parser')
        table = soup.find('table')
        if table is None:
            raise ListingUnavailableError("Listing page contains no table")

        filenames = []
        for row in table.find_all('tr'):
            first_cell = row.find(['td', 'th'])
            if first_cell is None:
                continue
            name = first_cell.get_text(strip=True)
            if name.lower().startswith(self.filename_prefix):
                filenames.append(name)

        return list(dict.fromkeys(filenames))

    def _download_listing(self, listing_url: str) -> List[str]:
        logger.info(f"Fetching file listing from {listing_url}")

        try:
            response = self.session.get(listing_url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise ListingUnavailableError(
                f"Failed to download listing: {e}", {'url': listing_url}
            ) from e

        return self.parse_listing(response.text)

    def fetch_listing(self, listing_url: str) -> Optional[List[str]]:
        """
        Fetch and parse a listing page.

        Returns:
            Optional[List[str]]: Granule names in archive order, or None when
            the listing is unavailable (network or parse failure)
        """
        try:
            filenames = self._download_listing(listing_url)
        except ListingUnavailableError as e:
            logger.warning(
                f"Unable to download file list from {listing_url}: {e}. "
                f"Check internet connection, or data for this date may not be available."
            )
            return None

        logger.info(f"Found {len(filenames)} candidate files in listing")
        return filenames
