"""
This package contains the checks run against photographs of printed sheets:
marker registration and colour calibration.
"""
