"""allotsync -- mirror allotment edits back into the spreadsheet of record."""

__version__ = "0.3.0"
