"""
Media Transfer Layer.

This package is responsible for getting sample files into the cache:
HTTP downloads and archive extraction.
"""

from .downloader import SampleDownloader
from .extractor import extract_archive

__all__ = ["SampleDownloader", "extract_archive"]
