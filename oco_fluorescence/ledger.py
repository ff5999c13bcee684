"""
Processing Ledger for Idempotent OCO-2 Downloads

Three append-only logs record which dates, listing URLs, and sounding files
have already been processed. A token is recorded when processing for that
unit starts, so presence means "do not reprocess" regardless of whether the
earlier attempt succeeded.

Membership is a substring test against every recorded line: a token that
occurs inside any previously recorded token counts as seen.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class LedgerKind(Enum):
    """Units of work tracked by the ledger."""
    DATE = 'date'
    LISTING = 'listing'
    FILE = 'file'


DEFAULT_LEDGER_FILENAMES = {
    LedgerKind.DATE: 'checked.dates',
    LedgerKind.LISTING: 'checked.urls',
    LedgerKind.FILE: 'checked.files',
}


class LedgerStore(ABC):
    """Capability set injected into the orchestrator."""

    @abstractmethod
    def has_seen(self, kind: LedgerKind, token: str) -> bool:
        """Return True if token occurs in any recorded entry of this kind."""

    @abstractmethod
    def mark_seen(self, kind: LedgerKind, token: str) -> None:
        """Append token to the ledger of this kind."""


class FileLedgerStore(LedgerStore):
    """
    Ledger backed by line-oriented text files, one token per line.

    Files are created empty if absent. Entries are never removed or
    deduplicated. There is no locking; a single process must own the files.

    Attributes:
        paths (Dict[LedgerKind, Path]): Backing file for each ledger kind
    """

    def __init__(
        self,
        directory: Union[str, Path],
        filenames: Optional[Dict[LedgerKind, str]] = None,
    ):
        """
        Initialize file-backed ledger.

        Args:
            directory: Directory holding the ledger files
            filenames: Optional override of the file name per ledger kind.
                Absolute paths are used as given.
        """
        self.directory = Path(directory)
        names = dict(DEFAULT_LEDGER_FILENAMES)
        if filenames:
            names.update(filenames)

        self.paths = {kind: self.directory / names[kind] for kind in LedgerKind}
        self._create_missing_files()

    def _create_missing_files(self) -> None:
        for kind, path in self.paths.items():
            if not path.exists():
                path.parent.mkdir(parents=True, exist_ok=True)
                path.touch()
                logger.debug(f"Created empty {kind.value} ledger: {path}")

    def entries(self, kind: LedgerKind) -> List[str]:
        """Return all recorded tokens of this kind, in write order."""
        with open(self.paths[kind], 'r', encoding='utf-8') as f:
            return [line.rstrip('\n') for line in f]

    def has_seen(self, kind: LedgerKind, token: str) -> bool:
        return any(token in entry for entry in self.entries(kind))

    def mark_seen(self, kind: LedgerKind, token: str) -> None:
        with open(self.paths[kind], 'a', encoding='utf-8') as f:
            f.write(f"{token}\n")
        logger.debug(f"Recorded {kind.value} ledger entry: {token}")
