"""Sanitization and field rules for event data."""
import re
from datetime import datetime
from typing import Any

MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500

CATEGORIES = ('work', 'personal', 'health', 'education', 'social', 'travel', 'general')
DEFAULT_CATEGORY = 'general'

DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')
TIME_PATTERN = re.compile(r'^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$')

_ANGLE_BRACKETS = re.compile(r'[<>]')
_WHITESPACE = re.compile(r'\s+')


def sanitize_text(value: Any, max_length: int) -> str:
    """
    Clean free text entered by a user.

    Removes angle brackets, collapses runs of whitespace to a single space,
    trims, and truncates to ``max_length``. Anything that is not a string
    becomes an empty string.

    Args:
        value: Raw input
        max_length: Maximum length of the result

    Returns:
        Sanitized string
    """
    if not isinstance(value, str):
        return ''

    text = _ANGLE_BRACKETS.sub('', value)
    text = _WHITESPACE.sub(' ', text).strip()
    return text[:max_length].rstrip()


def is_valid_date(date_str: Any) -> bool:
    """Check for a ``YYYY-MM-DD`` string naming a real calendar day."""
    if not isinstance(date_str, str) or not DATE_PATTERN.match(date_str):
        return False

    try:
        datetime.strptime(date_str, '%Y-%m-%d')
    except ValueError:
        return False
    return True


def is_valid_time(time_str: Any) -> bool:
    """Check an optional ``HH:MM`` 24-hour time. Empty means absent and is valid."""
    if time_str in (None, ''):
        return True
    return isinstance(time_str, str) and bool(TIME_PATTERN.match(time_str))


def normalize_time(time_str: Any) -> str:
    """
    Normalize a time value for storage.

    Valid times are zero-padded to ``HH:MM`` so that string comparison
    orders them chronologically ("9:05" becomes "09:05"). Invalid values are
    kept as given (stripped) so that validation can report them.

    Args:
        time_str: Raw time value

    Returns:
        Normalized time string, or '' when absent
    """
    if time_str is None:
        return ''
    if not isinstance(time_str, str):
        return str(time_str)

    time_str = time_str.strip()
    if time_str and TIME_PATTERN.match(time_str):
        hours, minutes = time_str.split(':')
        return f"{int(hours):02d}:{minutes}"
    return time_str


def normalize_date(date_str: Any) -> str:
    """Strip a date value; non-strings other than None are stringified so validation can flag them."""
    if date_str is None:
        return ''
    if not isinstance(date_str, str):
        return str(date_str)
    return date_str.strip()


def normalize_category(category: Any) -> str:
    # Empty or missing falls back to the default; anything else is validated later
    if category is None or category == '':
        return DEFAULT_CATEGORY
    if not isinstance(category, str):
        return str(category)
    return category.strip().lower()
