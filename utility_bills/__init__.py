"""Utility bill document pipeline.

Rectifies photographed utility bills with OpenCV, recognizes them through a
template/general OCR service, extracts structured fields with a
schema-constrained language model and triages the result into an
auto-confirmed or reviewable bill record.
"""

__version__ = "1.0.0"
