"""
This module defines the Pydantic models describing a template, its editable
fields and the values bound to them.

All models are frozen: edits go through the transition functions in
`field_model`, which build new objects instead of mutating existing ones.
"""

import uuid
from typing import Dict, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..config import PX_PER_MM_CSS

FieldKind = Literal["text", "image", "barcode"]
Align = Literal["left", "center", "right"]
FitMode = Literal["cover", "contain", "fill"]
BarcodeType = Literal["code128", "code39", "ean13", "qr"]

FIELD_KINDS: Tuple[str, ...] = ("text", "image", "barcode")
FIT_MODES: Tuple[str, ...] = ("cover", "contain", "fill")
BARCODE_TYPES: Tuple[str, ...] = ("code128", "code39", "ean13", "qr")


class ViewBox(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: float = 0.0
    y: float = 0.0
    width: float = Field(gt=0)
    height: float = Field(gt=0)


class Template(BaseModel):
    """
    An imported design.

    Attributes:
        id (str): Stable identifier, generated on import.
        name (str): Display name, usually the file name.
        document (str): Serialized canonical SVG.
        width (float): Declared width in `unit`.
        height (float): Declared height in `unit`.
        unit (str): "mm" or "px".
        view_box (Optional[ViewBox]): The document's viewBox when it declares one.
        fonts (Tuple[str, ...]): Font family names referenced by the document.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str = "template.svg"
    document: str
    width: float = Field(gt=0)
    height: float = Field(gt=0)
    unit: Literal["mm", "px"] = "px"
    view_box: Optional[ViewBox] = None
    fonts: Tuple[str, ...] = ()

    def size_mm(self) -> Tuple[float, float]:
        if self.unit == "mm":
            return self.width, self.height
        return self.width / PX_PER_MM_CSS, self.height / PX_PER_MM_CSS

    def user_size(self) -> Tuple[float, float]:
        """Width and height in document user units (the viewBox when present)."""
        if self.view_box is not None:
            return self.view_box.width, self.view_box.height
        return self.width, self.height


class FieldDefinition(BaseModel):
    """
    One editable region of a template.

    Geometry (`x`, `y`, `width`, `height`) is in percent of the document.
    Styling attributes apply to text fields, `fit_mode` to image fields and
    `barcode_type` to barcode fields.

    Auto-detected fields point back at the element they were found on through
    `source_id`; manually added fields never carry one.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    label: str = ""
    kind: FieldKind = "text"
    x: float = 10.0
    y: float = 10.0
    width: Optional[float] = None
    height: Optional[float] = None
    font_family: Optional[str] = None
    font_size: Optional[float] = None
    font_weight: Optional[int] = None
    color: Optional[str] = None
    align: Align = "left"
    fit_mode: FitMode = "cover"
    barcode_type: BarcodeType = "code128"
    default_text: Optional[str] = None
    auto: bool = False
    source_id: Optional[str] = None

    @model_validator(mode="after")
    def _check_source(self):
        if self.auto and not self.source_id:
            raise ValueError(f"Auto-detected field '{self.id}' must reference its source element.")
        if not self.auto and self.source_id:
            raise ValueError(f"Manually added field '{self.id}' cannot reference a source element.")
        return self


class ImageValue(BaseModel):
    """
    The value of an image field: a source reference plus placement adjustments.

    Offsets are fractions of the field box (0.1 moves the image right by a
    tenth of the box width); scale multiplies the box.
    """
    model_config = ConfigDict(frozen=True)

    src: str
    offset_x: float = 0.0
    offset_y: float = 0.0
    scale: float = 1.0


CardValue = Union[str, ImageValue]
CardData = Dict[str, CardValue]


def is_image_value(value) -> bool:
    return isinstance(value, ImageValue)
