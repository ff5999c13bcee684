"""
OCO-2 Fluorescence Downloader

Batch acquisition of solar-induced fluorescence soundings from the OCO-2
Level 2 IMAP-DOAS archive for a fixed region of interest.

Pipeline:
- Processing ledger for idempotent re-runs (dates, listings, files)
- Daily archive listing resolution and parsing
- Bounding-box filtering of soundings
- HDF5 field extraction and append-only CSV output
"""

__version__ = "1.0.0"
__author__ = "OCO Fluorescence Development Team"
