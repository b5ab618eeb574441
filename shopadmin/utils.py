import html
from typing import Optional

import bleach

LIKE_ESCAPE = "\\"

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 12
MAX_LIMIT = 100
# keeps (page - 1) * limit inside a signed 64-bit OFFSET
MAX_OFFSET = 2**63 - 1


def strip_tags(value: Optional[str]) -> str:
    """Remove HTML markup from user-supplied text meant to be stored.

    - Strips tags using bleach.clean(..., strip=True), keeping their text
    - Unescapes the entities bleach adds so "Home & Kitchen" stays readable
    - Repeats until stable, so escaped markup cannot come back as tags
    - Trims whitespace
    """
    if value is None:
        return ""
    val = value.replace("\x00", "")
    while True:
        cleaned = html.unescape(bleach.clean(val, tags=[], strip=True))
        if cleaned == val:
            break
        val = cleaned
    return val.strip()


def escape_like(value: Optional[str]) -> str:
    """Escape a user-supplied string so LIKE matches it literally.

    - Escapes the escape character itself first
    - Escapes the ``%`` and ``_`` wildcards
    - Removes NULL bytes
    """
    if value is None:
        return ""
    val = value.replace("\x00", "")
    val = val.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
    val = val.replace("%", LIKE_ESCAPE + "%").replace("_", LIKE_ESCAPE + "_")
    return val


def parse_positive_int(value, default: int, maximum: Optional[int] = None) -> int:
    """Parse a query-string number, falling back to ``default`` when unusable."""
    if value is None:
        return default
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    if parsed <= 0:
        return default
    return min(parsed, maximum) if maximum is not None else parsed


def parse_pagination(page, limit) -> tuple[int, int]:
    limit = parse_positive_int(limit, DEFAULT_LIMIT, MAX_LIMIT)
    page = parse_positive_int(page, DEFAULT_PAGE, MAX_OFFSET // limit + 1)
    return page, limit
