"""Utility helpers."""
import re
from typing import Optional

_DIGITS = re.compile(r'\d+')


def parse_app_id(link: str) -> Optional[str]:
    """
    Extract the numeric app id from a store share link.

    Takes the digits that follow the last 'id' in the link; a bare
    number is returned as is.

    Example:
        >>> parse_app_id('https://apps.apple.com/us/app/example/id544007664?l=en')
        '544007664'
    """
    text = link.strip()
    if text.isdigit():
        return text
    if 'id' not in text:
        return None
    match = _DIGITS.match(text.rsplit('id', 1)[1])
    return match.group(0) if match else None
