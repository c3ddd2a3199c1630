"""Mod agent package.

Answers the site's ``GetModStatus`` and ``Patch`` messages for the app
installed on the device.
"""
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("mbf")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"
