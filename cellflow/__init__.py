"""CellFlow - AI-generated spreadsheet fields."""

__version__ = "0.1.0"
