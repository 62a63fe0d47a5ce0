import html
from typing import Optional


def sanitize_string(value: Optional[str]) -> Optional[str]:
    """
    Sanitize a string by escaping HTML special characters to prevent XSS.
    Returns None if input is None.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        return value
    return html.escape(value.strip(), quote=True)


def unescape_string(value: Optional[str]) -> Optional[str]:
    """
    Reverse sanitize_string for text read back from storage.

    Stored proposal text is already escaped; copying it into a new proposal
    (reissue, re-price) goes through sanitize_string again, so it has to be
    unescaped first or the entities double up.
    """
    if not value:
        return value
    return html.unescape(value)
