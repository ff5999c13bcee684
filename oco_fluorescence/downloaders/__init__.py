"""
OCO-2 Downloaders Package

Archive downloaders for OCO-2 Level 2 products. Each downloader walks the
archive by date and processes granules strictly one at a time.
"""

from .base import BaseDownloader
from .oco_downloader import OCODownloader, DATE_EXISTS, URL_EXISTS, UNABLE_TO_DOWNLOAD

__all__ = ['BaseDownloader', 'OCODownloader', 'DATE_EXISTS', 'URL_EXISTS', 'UNABLE_TO_DOWNLOAD']
