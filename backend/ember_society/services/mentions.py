import re
from typing import List

# ASCII word characters only, matching usernames accepted at registration
MENTION_PATTERN = re.compile(r"@(\w+)", re.ASCII)


def extract_mentions(text: str) -> List[str]:
    """Return ``@username`` mentions in ``text``, de-duplicated, in first-seen order."""
    if not text:
        return []
    return list(dict.fromkeys(MENTION_PATTERN.findall(text)))
