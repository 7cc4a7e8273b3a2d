"""Business logic services.

This package contains the Google API client, OAuth token handling, the
per-integration services (Sheets, Drive, Calendar, e-mail) and the
submission pipeline that orchestrates them.
"""
