"""Step-through interpreter and debugger for Windows Batch scripts."""

__version__ = "0.1.0"
