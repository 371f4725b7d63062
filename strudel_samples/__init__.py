"""
strudel-samples: a local, content-hashed sample cache with a resumable,
checksum-verified downloader for Strudel sample packs.
"""

__version__ = "0.2.0"
