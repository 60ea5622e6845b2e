"""FnHub: cloud function IDE backend with git synchronization."""

__version__ = "0.1.0"
