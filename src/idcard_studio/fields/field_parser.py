"""
field_parser.py

Turns a person record into card data through standardized field names.

A standard name reads {field}_{format}_{capitalization}, for example:

    fullName_Last_Comma_First_MiddleInitial_AllCaps -> "WOLVES, TIMBER J."
    fullName_First_MiddleInitial_Last               -> "Timber J. Wolves"
    firstName_AllCaps                               -> "TIMBER"
    photo                                           -> ImageValue of the photo path

Template fields are linked to standard names by FieldMapping entries, which
can be generated automatically from the fields' source element ids.
"""

import logging
from typing import Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict

from .models import CardData, FieldDefinition, ImageValue

logger = logging.getLogger(__name__)

CUSTOM_STATIC_VALUE = "__custom__"

STANDARD_FIELDS = [
    "firstName", "firstName_AllCaps", "firstName_TitleCase",
    "lastName", "lastName_AllCaps", "lastName_TitleCase",
    "middleName", "middleName_AllCaps", "middleName_TitleCase",
    "middleInitial", "middleInitial_AllCaps",
    "fullName_First_Last", "fullName_First_Last_AllCaps",
    "fullName_First_MiddleInitial_Last", "fullName_First_MiddleInitial_Last_AllCaps",
    "fullName_First_Middle_Last", "fullName_First_Middle_Last_AllCaps",
    "fullName_Last_Comma_First", "fullName_Last_Comma_First_AllCaps",
    "fullName_Last_Comma_First_MiddleInitial", "fullName_Last_Comma_First_MiddleInitial_AllCaps",
    "fullName_Last_Comma_First_Middle", "fullName_Last_Comma_First_Middle_AllCaps",
    "studentId", "department", "position", "grade", "email", "phoneNumber",
    "address", "emergencyContact", "issueDate", "expiryDate", "birthDate",
    "photo", "signature", "logo",
]

# Record attribute for each simple field name.
SIMPLE_FIELDS = {
    "firstName": "first_name",
    "lastName": "last_name",
    "middleName": "middle_name",
    "studentId": "student_id",
    "department": "department",
    "position": "position",
    "grade": "grade",
    "email": "email",
    "phoneNumber": "phone_number",
    "address": "address",
    "emergencyContact": "emergency_contact",
    "issueDate": "issue_date",
    "expiryDate": "expiry_date",
    "birthDate": "birth_date",
}

IMAGE_FIELDS = {"photo": "photo_path", "profilephoto": "photo_path", "signature": "signature_path", "logo": None}

CAPITALIZATION_KEYWORDS = ("allcaps", "upper", "titlecase", "title", "lowercase", "lower")

# Variations seen in designs, mapped to standard names.
ALIASES = {
    "profilephoto": "photo",
    "profile": "photo",
    "userphoto": "photo",
    "studentid": "studentId",
    "student_id": "studentId",
    "id": "studentId",
    "fullname": "fullName_Last_Comma_First_MiddleInitial_AllCaps",
    "name": "fullName_Last_Comma_First_MiddleInitial_AllCaps",
}

# Spreadsheet column headers mapped to record attributes.
HEADER_SUGGESTIONS = {
    "first name": "first_name", "firstname": "first_name", "given name": "first_name",
    "last name": "last_name", "lastname": "last_name", "surname": "last_name", "family name": "last_name",
    "middle name": "middle_name", "middlename": "middle_name",
    "student id": "student_id", "studentid": "student_id", "id": "student_id",
    "dept": "department", "department": "department",
    "position": "position", "title": "position", "role": "position",
    "grade": "grade", "class": "grade",
    "email": "email", "e-mail": "email",
    "phone": "phone_number", "phone number": "phone_number", "telephone": "phone_number",
    "address": "address",
    "emergency contact": "emergency_contact", "emergency": "emergency_contact",
    "photo": "photo_path", "photo path": "photo_path",
    "signature": "signature_path", "signature path": "signature_path",
    "issue date": "issue_date", "issued": "issue_date",
    "expiry date": "expiry_date", "expiry": "expiry_date", "expires": "expiry_date",
    "birth date": "birth_date", "birthday": "birth_date", "dob": "birth_date",
}


class UserRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    first_name: str = ""
    last_name: str = ""
    middle_name: Optional[str] = None
    student_id: Optional[str] = None
    department: Optional[str] = None
    position: Optional[str] = None
    grade: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    emergency_contact: Optional[str] = None
    photo_path: Optional[str] = None
    signature_path: Optional[str] = None
    issue_date: Optional[str] = None
    expiry_date: Optional[str] = None
    birth_date: Optional[str] = None


class FieldMapping(BaseModel):
    """Links a template element (by source id or field id) to a standard field name."""
    svg_layer_id: str
    standard_field_name: str
    custom_value: Optional[str] = None


def apply_capitalization(text: str, capitalization: Optional[str]) -> str:
    if not capitalization:
        return text
    cap = capitalization.lower()
    if cap in ("allcaps", "upper"):
        return text.upper()
    if cap in ("titlecase", "title"):
        return " ".join(w[:1].upper() + w[1:].lower() for w in text.split(" "))
    if cap in ("lowercase", "lower"):
        return text.lower()
    return text


def _simple_value(field_type: str, record: UserRecord) -> str:
    if field_type == "middleInitial":
        return (record.middle_name or "")[:1]
    attr = SIMPLE_FIELDS.get(field_type)
    return (getattr(record, attr) or "") if attr else ""


def _image_value(field_type: str, record: UserRecord) -> Union[str, ImageValue]:
    attr = IMAGE_FIELDS.get(field_type.lower())
    path = getattr(record, attr) if attr else None
    if not path:
        return ""
    return ImageValue(src=path, offset_x=0.0, offset_y=0.0, scale=1.0)


def format_full_name(format_parts: Sequence[str], record: UserRecord, capitalization: Optional[str] = None) -> str:
    """
    Join name parts in the order given, e.g. ["Last", "Comma", "First", "MiddleInitial"]
    gives "Wolves, Timber J.".
    """
    middle = record.middle_name or ""
    pieces = {
        "first": record.first_name or "",
        "last": record.last_name or "",
        "middle": middle,
        "middlename": middle,
        "middleinitial": f"{middle[:1]}." if middle else "",
        "comma": ",",
    }
    result = ""
    parts = [p.lower() for p in format_parts]
    for i, part in enumerate(parts):
        result += pieces.get(part, "")
        if i < len(parts) - 1:
            if part == "comma" or parts[i + 1] != "comma":
                result += " "
    result = " ".join(result.split())
    return apply_capitalization(result, capitalization)


def parse_field(field_name: str, record: UserRecord, custom_value: Optional[str] = None) -> Union[str, ImageValue]:
    """Resolve one standard field name against a record."""
    if field_name == CUSTOM_STATIC_VALUE:
        return custom_value or ""
    parts = field_name.split("_")
    field_type = parts[0]

    if field_type.lower() in IMAGE_FIELDS:
        return _image_value(field_type, record)

    capitalization = parts[-1] if len(parts) > 1 and parts[-1].lower() in CAPITALIZATION_KEYWORDS else None
    format_parts = parts[1:-1] if capitalization else parts[1:]

    if field_type == "fullName" and format_parts:
        return format_full_name(format_parts, record, capitalization)
    return apply_capitalization(_simple_value(field_type, record), capitalization)


def _standard_name_for(layer_id: str) -> Optional[str]:
    if layer_id in STANDARD_FIELDS:
        return layer_id
    normalized = layer_id.lower()
    for name in STANDARD_FIELDS:
        if name.lower() == normalized:
            return name
    return ALIASES.get(normalized)


def generate_auto_mappings(fields: Sequence[FieldDefinition]) -> List[FieldMapping]:
    """
    Map fields whose source id or field id names a standard field, a known
    variation or starts with "custom" (a static value taken from the field label).
    The source id is tried first.
    """
    mappings = []
    for f in fields:
        candidates = [c for c in (f.source_id, f.id) if c]
        named = [(c, _standard_name_for(c)) for c in candidates]
        named = [(c, n) for c, n in named if n]
        if named:
            layer_id, name = named[0]
            mappings.append(FieldMapping(svg_layer_id=layer_id, standard_field_name=name))
            continue
        layer_id = candidates[0]
        if layer_id.lower().startswith("custom"):
            mappings.append(
                FieldMapping(svg_layer_id=layer_id, standard_field_name=CUSTOM_STATIC_VALUE, custom_value=f.label or "")
            )
    return mappings


def is_auto_mappable(field: FieldDefinition) -> bool:
    return bool(generate_auto_mappings([field]))


def suggest_field_mapping(header: str) -> Optional[str]:
    """Record attribute a spreadsheet column most likely holds."""
    return HEADER_SUGGESTIONS.get(header.strip().lower())


def build_card_data(
    fields: Sequence[FieldDefinition],
    record: UserRecord,
    mappings: Optional[Sequence[FieldMapping]] = None,
) -> CardData:
    """
    Card data for one record. Fields without a mapping get no value and keep
    their default content when rendered.
    """
    if mappings is None:
        mappings = generate_auto_mappings(fields)
    by_layer: Dict[str, FieldMapping] = {m.svg_layer_id: m for m in mappings}
    data: CardData = {}
    for f in fields:
        mapping = by_layer.get(f.source_id or "") or by_layer.get(f.id)
        if mapping is None:
            continue
        value = parse_field(mapping.standard_field_name, record, mapping.custom_value)
        if value == "" and f.kind == "image":
            continue
        data[f.id] = value
    logger.debug("Built card data for %s %s: %d value(s)", record.first_name, record.last_name, len(data))
    return data
