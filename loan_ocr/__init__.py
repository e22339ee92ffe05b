"""Loan Disclosure Recognition Pipeline.

Turns scanned or digital loan disclosure documents (multi-page PDFs)
into a structured, confidence-scored set of financial fields by
combining a remote recognition backend with deterministic text patterns.
"""

__version__ = "1.0.0"
