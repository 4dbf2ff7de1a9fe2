"""
ContentGuard - Resilience layer for a rate-limited remote content API.

Classifies remote failures, retries them with exponential backoff, keeps
each credential inside its request budget, and caches idempotent reads.
"""

__version__ = "0.1.0"
__app_name__ = "contentguard"
