"""
Shared fixtures for the idcard_studio test suite.
"""

import sys
from pathlib import Path

import pytest

# Add src/ to sys.path so the suite runs from a plain checkout
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root / "src"))

CARD_SVG = """<svg xmlns="http://www.w3.org/2000/svg" xmlns:xlink="http://www.w3.org/1999/xlink"
     width="86mm" height="54mm" viewBox="0 0 325 204">
  <style>.title { font-size: 18px; font-family: 'Open Sans', sans-serif; }</style>
  <rect x="0" y="0" width="325" height="204" fill="#ffffff"/>
  <text id="name-label" x="120" y="60" class="title" data-field-id="name" data-field-type="text"
        data-default-text="Full Name">Full Name</text>
  <g id="photo-box" data-field-id="photo" data-field-type="image" data-fit-mode="cover">
    <rect x="10" y="20" width="80" height="100" fill="#eeeeee" stroke="#999999"/>
  </g>
  <g id="code-box" data-field-id="member" data-field-type="barcode" data-barcode-type="ean13">
    <rect x="120" y="140" width="150" height="40" fill="#ffffff" stroke="#9ca3af"/>
  </g>
</svg>
"""


@pytest.fixture
def card_svg():
    return CARD_SVG


@pytest.fixture
def photo_file(tmp_path):
    """A small PNG on disk to bind to image fields."""
    from PIL import Image

    path = tmp_path / "photo.png"
    Image.new("RGB", (60, 80), (200, 120, 40)).save(path)
    return path
