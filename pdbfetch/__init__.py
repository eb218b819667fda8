"""Fetch PDB symbol files for PE images and parse PE images and COFF objects."""

__version__ = "0.1.0"
__all__ = [
    "cli",
    "directories",
    "extra_structures",
    "guid",
    "ordinals",
    "pefile",
    "structures",
    "util",
]