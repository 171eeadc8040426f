"""Reconcile RDS/Aurora MySQL configuration settings against a live instance."""

__version__ = "0.1.0"
