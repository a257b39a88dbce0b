"""
This package contains the template and field model: the immutable Template,
field definitions and bound card data, plus the SVG import that detects
fields and the helpers that turn a user record into card data.
"""
