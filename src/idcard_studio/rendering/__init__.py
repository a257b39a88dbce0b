"""
This package contains the data-binding renderer that substitutes card data
into a template's SVG, along with barcode, image and font helpers.
"""
