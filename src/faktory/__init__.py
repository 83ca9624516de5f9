"""Faktory - autonomous yield strategy agent for tokenized invoices."""

__version__ = "0.1.0"
