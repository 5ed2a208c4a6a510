"""localdocs: chat with the documents in a local folder."""

__version__ = "0.1.0"
