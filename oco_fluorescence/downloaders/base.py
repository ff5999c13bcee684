"""
Base Downloader Class for OCO-2 Fluorescence Acquisition

This module provides an abstract base class for archive downloaders. It owns
the working directory, the HTTP session, and the streamed file download that
every concrete downloader uses to fetch granules.

Downloads are strictly sequential. Each HTTP call carries a timeout so that
an unresponsive archive cannot stall a run indefinitely.
"""

from abc import ABC, abstractmethod
from datetime import date
from pathlib import Path
from typing import Any, Optional
import logging
import time

import requests

from ..logging_utils import DataDownloadError

logger = logging.getLogger(__name__)


class BaseDownloader(ABC):
    """
    Abstract base class for OCO-2 archive downloaders.

    Attributes:
        working_directory (Path): Root directory for ledgers, table and scratch file
        timeout (float): HTTP timeout in seconds
        retry_attempts (int): Extra attempts after a failed download
        retry_delay (float): Base delay in seconds between attempts
        chunk_size (int): Streaming chunk size in bytes
    """

    def __init__(
        self,
        working_directory: str,
        timeout: float = 120,
        retry_attempts: int = 0,
        retry_delay: float = 5,
        chunk_size: int = 1024 * 1024,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the base downloader.

        Args:
            working_directory (str): Directory for all persistent state
            timeout (float): HTTP timeout in seconds. Default: 120
            retry_attempts (int): Extra attempts after a failure. Default: 0
            retry_delay (float): Base backoff delay in seconds. Default: 5
            chunk_size (int): Streaming chunk size in bytes. Default: 1 MiB
            session (Optional[requests.Session]): Shared HTTP session
        """

        self.working_directory = Path(working_directory)
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.chunk_size = chunk_size
        self.session = session or requests.Session()

        self._setup_working_directory()

        logger.info(f"Initialized {self.__class__.__name__}")
        logger.info(f"Working directory: {self.working_directory}")

    def _setup_working_directory(self) -> None:
        self.working_directory.mkdir(parents=True, exist_ok=True)

    def resolve_path(self, path: str) -> Path:
        """Resolve a configured path against the working directory."""
        path = Path(path)
        return path if path.is_absolute() else self.working_directory / path

    @abstractmethod
    def download_date(self, day: date, **kwargs) -> Any:
        """
        Download and process data for a single date.

        Raises:
            NotImplementedError: Must be implemented by subclasses
        """

        raise NotImplementedError(
            f"{self.__class__.__name__} must implement download_date()"
        )

    def _stream_to_file(self, url: str, destination: Path) -> None:
        with self.session.get(url, stream=True, timeout=self.timeout) as response:
            response.raise_for_status()
            with open(destination, 'wb') as f:
                for chunk in response.iter_content(chunk_size=self.chunk_size):
                    if chunk:
                        f.write(chunk)

    def download_file(self, url: str, destination: Path) -> Path:
        """
        Stream a remote file to destination, overwriting any previous content.

        Args:
            url (str): Remote file URL
            destination (Path): Local output path

        Returns:
            Path: The destination path

        Raises:
            DataDownloadError: If every attempt fails
        """

        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)

        max_attempts = self.retry_attempts + 1
        for attempt in range(max_attempts):
            try:
                self._stream_to_file(url, destination)
                logger.info(f"Downloaded {url}")
                return destination

            except requests.RequestException as e:
                logger.warning(f"Download attempt {attempt + 1}/{max_attempts} failed for {url}: {e}")
                if attempt < max_attempts - 1:
                    wait_time = self.retry_delay * 2 ** attempt  # Exponential backoff
                    logger.info(f"Retrying in {wait_time} seconds...")
                    time.sleep(wait_time)
                else:
                    raise DataDownloadError(
                        f"Failed to download {url} after {max_attempts} attempts: {e}",
                        {'url': url, 'destination': str(destination)}
                    ) from e
