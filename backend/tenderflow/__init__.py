"""TenderFlow — resumable, streaming batch generation of tender proposals."""

__version__ = "0.1.0"
