"""
This package contains the visual design object graph and the compiler that
turns it into a field-annotated SVG document.
"""
