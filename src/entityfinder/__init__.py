"""EntityFinder - rule-driven entity resolution over searchable collections."""

__version__ = "0.1.0"
