"""Per-recipient message rendering."""
from __future__ import annotations

import re

from models.schemas import RecipientHandle

_PLACEHOLDER = re.compile(r"\{(user|username|tag|guild)\}")


def render_message(template: str, recipient: RecipientHandle, context_name: str) -> str:
    """
    Substitute {user}, {username}, {tag} and {guild}.

    Single pass: substituted values are never re-scanned, so a username
    that looks like a placeholder stays as typed. Unknown placeholders are
    left untouched.
    """
    values = {
        "user": recipient.mention,
        "username": recipient.username,
        "tag": recipient.tag,
        "guild": context_name,
    }
    return _PLACEHOLDER.sub(lambda m: values[m.group(1)], template)


def preview(template: str, length: int = 100) -> str:
    return template[:length] + ("..." if len(template) > length else "")
