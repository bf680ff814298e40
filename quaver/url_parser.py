import re
from enum import Enum, auto


class InputType(Enum):
    YOUTUBE_URL = auto()
    SEARCH_QUERY = auto()


_YOUTUBE_RE = re.compile(
    r"(?:https?://)?(?:www\.|m\.|music\.)?(?:youtube\.com|youtu\.be)/?\S+"
)


def classify(query: str) -> tuple[InputType, str]:
    """Return (InputType, cleaned_value) for a user query.

    YouTube links (including youtu.be short links) are passed through as-is;
    anything else is treated as search keywords.
    """
    query = query.strip()

    if _YOUTUBE_RE.match(query):
        return InputType.YOUTUBE_URL, query

    return InputType.SEARCH_QUERY, query
