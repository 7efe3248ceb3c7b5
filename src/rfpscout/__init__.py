"""
RFPScout - Batch discovery and fit tracking for procurement RFPs.

Pulls a listing feed, narrows it to promising candidates, fetches detail,
scores fit against a business profile, and keeps a durable history of
everything seen across runs.
"""

__version__ = "0.1.0"
__app_name__ = "rfpscout"
