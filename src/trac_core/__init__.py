"""Trac core - query routing and result normalization for WordPress Trac.

Modules:
- csv_export: CSV ticket export parsing
- markup: changeset page and RSS field extraction
- fetchers: one fetcher per resource type
- classifier: free-form query routing
- schemas: normalized result records
"""

__version__ = "1.0.0"
