"""
This package contains the print layout engine: N-up grid geometry, sheet
composition with corner markers and export at physical size.
"""
