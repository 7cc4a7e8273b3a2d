"""FastAPI service for FormToSheets submission sync.

This package stores form submissions and fans them out to Google Sheets,
Google Drive, Google Calendar and e-mail notifications.
"""

__version__ = "1.0.0"
