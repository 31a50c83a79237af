"""Mirror tagged Google Drive files into ClickUp tasks on a schedule."""

__version__ = "0.3.0"
