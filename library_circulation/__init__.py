"""Library circulation service: borrow requests, returns, fines and overdue tracking."""

__version__ = '1.0.0'
