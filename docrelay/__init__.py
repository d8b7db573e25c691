"""docrelay: document-to-markdown conversion with permanent image relocation."""

__version__ = "0.1.0"
