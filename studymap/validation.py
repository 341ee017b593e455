"""Input checks applied before a title or content reaches the store."""

from typing import Optional

from studymap.errors import InvalidInputError

TITLE_MIN_LENGTH = 3
TITLE_MAX_LENGTH = 100
CONTENT_MAX_LENGTH = 500


def validate_title(title) -> str:
    if not isinstance(title, str) or not (TITLE_MIN_LENGTH <= len(title) <= TITLE_MAX_LENGTH):
        raise InvalidInputError(
            f"Title must be between {TITLE_MIN_LENGTH} and {TITLE_MAX_LENGTH} characters"
        )
    return title


def validate_content(content) -> Optional[str]:
    """Return the content unchanged; an empty string is stored as None."""
    if content is None:
        return None
    if not isinstance(content, str) or len(content) > CONTENT_MAX_LENGTH:
        raise InvalidInputError(f"Content must be {CONTENT_MAX_LENGTH} characters or less")
    return content or None
