"""
JSON import/export of the place list.

Only ``locations`` travel through these files; the mode flags do not.
"""
from __future__ import annotations

import json
from typing import List, Sequence, Union

from domain.models import Place

EXPORT_FILENAME = "places.json"
EXPORT_MEDIA_TYPE = "application/json"

PARSE_ERROR_MESSAGE = "Could not parse JSON."
FORMAT_ERROR_MESSAGE = "Invalid file format."


class ImportFormatError(ValueError):
    """Raised when an uploaded document cannot be imported.

    The message is meant to be shown to the user as is.
    """


def export_locations(locations: Sequence[Place]) -> str:
    """Serialize places as a pretty-printed JSON array."""
    return json.dumps([p.to_dict() for p in locations], indent=2, ensure_ascii=False)


def parse_import(content: Union[str, bytes]) -> List[Place]:
    """
    Parse an uploaded document into places.

    The top-level value must be a JSON array of objects. Entries are read
    leniently; missing fields stay empty and are not validated further.
    """
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise ImportFormatError(PARSE_ERROR_MESSAGE) from exc
    try:
        parsed = json.loads(content)
    except ValueError as exc:
        raise ImportFormatError(PARSE_ERROR_MESSAGE) from exc
    if not isinstance(parsed, list) or not all(isinstance(item, dict) for item in parsed):
        raise ImportFormatError(FORMAT_ERROR_MESSAGE)
    return [Place.from_dict(item) for item in parsed]
