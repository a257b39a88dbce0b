"""
This package contains the ArUco fiducial marker codec: dictionary lookup,
payload encoding, binary rendering and photograph-tolerant detection.
"""
