"""Team credit ledger and manual fulfillment workflow for website build orders."""

__version__ = "1.0.0"
