"""
This package contains the core of the ID card studio: the template and field
model, the design compiler, the data-binding renderer and the print layout
and calibration tools built on ArUco fiducial markers.
"""

__version__ = "0.4.0"
