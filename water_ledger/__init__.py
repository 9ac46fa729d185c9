"""Water meter customer ledger: readings, billing, payments and spreadsheet exchange."""

__version__ = "0.1.0"
