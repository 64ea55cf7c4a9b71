"""File Lifecycle Agent - drives uploaded files from inbound to outbound/archive or error."""

__version__ = "0.1.0"
