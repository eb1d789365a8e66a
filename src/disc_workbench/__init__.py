"""
Disc Workbench - optical disc image filesystem browser.

Opens disc images stored in plain ISO, multi-track BIN/CUE and CHD
containers and browses the ISO 9660, Joliet, UDF, HFS and HFS+
filesystems on them.
"""

__version__ = "1.0.0"
