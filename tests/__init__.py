"""
Test suite for Disc Workbench.

This package contains tests including:
- Unit tests for readers, filesystems and utilities
- Integration tests for complete browse sessions and the command line
- Synthetic image fixtures for testing without real discs
"""

__version__ = "1.0.0"
