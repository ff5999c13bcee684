"""
Error Handling and Logging Infrastructure for OCO-2 Fluorescence Acquisition

This module provides standardized logging and error handling for the OCO-2
sounding download pipeline. It includes run statistics tracking, error
context management, and the exception hierarchy shared by all components.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
from contextlib import contextmanager


LOGGER_NAME = 'oco_fluorescence'


def setup_oco_logging(log_level: str = "INFO",
                      log_file: Optional[str] = None,
                      console_output: bool = True) -> logging.Logger:
    """
    Setup standardized logging for OCO-2 processing.

    Args:
        log_level: Logging level ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')
        log_file: Optional path to log file
        console_output: Whether to output logs to console

    Returns:
        Configured package logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level.upper()))

    # Clear any existing handlers
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, log_level.upper()))
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(logging.DEBUG)  # File logs capture everything
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


class ProcessingLogger:
    """
    Tracks progress of a download run.

    Counters are updated by the orchestrator as dates and files move through
    the pipeline, and reported in the closing summary.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        """
        Initialize processing logger.

        Args:
            logger: Logger instance to use. Defaults to the package logger.
        """
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        self.processing_start_time = None
        self.processing_stats = {
            'dates_processed': 0,
            'dates_skipped': 0,
            'listings_unavailable': 0,
            'files_downloaded': 0,
            'files_skipped': 0,
            'files_failed': 0,
            'records_written': 0,
            'errors_encountered': 0,
        }

    def increment(self, stat_name: str, amount: int = 1) -> None:
        self.processing_stats[stat_name] += amount

    def log_processing_start(self, parameters: Dict[str, Any]) -> None:
        """
        Log start of a download run.

        Args:
            parameters: Run parameters to echo into the log
        """
        self.processing_start_time = datetime.now()

        self.logger.info("=" * 60)
        self.logger.info("Starting OCO-2 fluorescence download")
        self.logger.info(f"Start time: {self.processing_start_time.isoformat()}")
        self.logger.info("Processing parameters:")

        for param_name, param_value in parameters.items():
            self.logger.info(f"  {param_name}: {param_value}")

        self.logger.info("=" * 60)

    def log_processing_error(self, error_type: str, error_details: str, context: Optional[Dict] = None) -> None:
        """
        Log a recoverable processing error with context.

        Args:
            error_type: Type/category of error
            error_details: Detailed error description
            context: Optional context dictionary with additional information
        """
        self.processing_stats['errors_encountered'] += 1

        self.logger.error(f"Processing error ({error_type}): {error_details}")

        if context:
            for key, value in context.items():
                self.logger.error(f"  {key}: {value}")

    def log_processing_complete(self) -> None:
        """Log completion of the run with summary statistics."""
        self.logger.info("=" * 60)
        if self.processing_start_time:
            processing_duration = datetime.now() - self.processing_start_time
            self.logger.info("OCO-2 fluorescence download completed")
            self.logger.info(f"Total processing time: {processing_duration}")
        else:
            self.logger.info("Processing completed")

        self.logger.info("Processing statistics:")
        for stat_name, stat_value in self.processing_stats.items():
            self.logger.info(f"  {stat_name}: {stat_value}")

        self.logger.info("=" * 60)

    def get_processing_summary(self) -> Dict[str, Any]:
        """
        Get summary of current processing session.

        Returns:
            Dictionary with processing summary information
        """
        summary = {
            'start_time': self.processing_start_time.isoformat() if self.processing_start_time else None,
            'current_time': datetime.now().isoformat(),
            'processing_stats': self.processing_stats.copy()
        }

        if self.processing_start_time:
            duration = datetime.now() - self.processing_start_time
            summary['elapsed_time'] = str(duration)

        return summary


class OCOError(Exception):
    """Base exception class for OCO-2 acquisition errors"""

    def __init__(self, message: str, context: Optional[Dict] = None):
        """
        Initialize OCO error.

        Args:
            message: Error message
            context: Optional context dictionary with additional information
        """
        super().__init__(message)
        self.context = context or {}
        self.timestamp = datetime.now()

    def get_full_error_info(self) -> Dict[str, Any]:
        """Get complete error information including context"""
        return {
            'error_type': self.__class__.__name__,
            'message': str(self),
            'timestamp': self.timestamp.isoformat(),
            'context': self.context
        }


class ConfigurationError(OCOError):
    """Error in configuration or setup"""
    pass


class DataDownloadError(OCOError):
    """Error downloading a sounding file"""
    pass


class ListingUnavailableError(OCOError):
    """Daily listing could not be fetched or parsed"""
    pass


class ExtractionError(OCOError):
    """Missing or malformed field in a sounding file"""
    pass


class OutputSchemaError(OCOError):
    """Existing output table does not match the record schema"""
    pass


@contextmanager
def error_context(operation_name: str, logger: Optional[ProcessingLogger] = None, **context_info):
    """
    Context manager for wrapping operations with error handling.

    Args:
        operation_name: Name of operation being performed
        logger: Optional ProcessingLogger instance
        **context_info: Additional context information

    Example:
        with error_context("extracting soundings", logger, file_name=name):
            records = extractor.extract(path, name, url)
    """
    start_time = datetime.now()

    if logger:
        logger.logger.debug(f"Starting operation: {operation_name}")

    try:
        yield
        duration = datetime.now() - start_time

        if logger:
            logger.logger.debug(f"Completed operation: {operation_name} (duration: {duration})")

    except Exception as e:
        duration = datetime.now() - start_time
        error_context_dict = {
            'operation': operation_name,
            'duration': str(duration),
            **context_info
        }

        if logger:
            logger.log_processing_error(
                error_type=type(e).__name__,
                error_details=str(e),
                context=error_context_dict
            )

        # Re-raise as OCO error if not already one
        if not isinstance(e, OCOError):
            if "download" in operation_name.lower():
                raise DataDownloadError(str(e), error_context_dict) from e
            elif "extract" in operation_name.lower():
                raise ExtractionError(str(e), error_context_dict) from e
            else:
                raise OCOError(str(e), error_context_dict) from e
        else:
            e.context.update(error_context_dict)
            raise
