"""Text and date normalization used as matching keys.

Connectors and the entity resolver must agree on these keys: a scraped
"The Beatles" and a catalog row created from "beatles" only deduplicate if
both pass through the same transform.

Two levels of text normalization are provided:

1. **normalize_text** -- case-fold, trim, collapse whitespace, and drop
   characters outside a conservative allow-list (word characters,
   whitespace, ``- ' . & ( )``).  Used for alias display keys and search.

2. **normalize_name** -- ``normalize_text`` followed by stripping the
   English articles *the*, *a*, *an* and removing all whitespace.  This is
   the ``name_normalized`` / ``alias_normalized`` column value.

Dates from providers arrive in several shapes (``dd-MM-yyyy`` from
setlist.fm, ISO-8601 elsewhere); :func:`normalize_date` reduces all of them
to a plain :class:`datetime.date`.
"""

from __future__ import annotations

import re
from datetime import date, datetime

_WHITESPACE = re.compile(r"\s+")
_DISALLOWED = re.compile(r"[^\w\s\-'.&()]")
_ARTICLES = re.compile(r"\b(the|a|an)\b")

# Provider date formats tried in order after ISO-8601.
_DATE_FORMATS = ("%d-%m-%Y", "%Y/%m/%d", "%d/%m/%Y", "%Y%m%d")


def normalize_text(text: str | None) -> str:
    """Case-fold, collapse whitespace, and strip disallowed characters.

    Returns an empty string for ``None`` or blank input.
    """
    if not text:
        return ""
    folded = text.casefold().strip()
    folded = _WHITESPACE.sub(" ", folded)
    folded = _DISALLOWED.sub("", folded)
    # Removing characters can leave doubled or edge spaces behind.
    return _WHITESPACE.sub(" ", folded).strip()


def _strip_articles(text: str) -> str:
    return _WHITESPACE.sub("", _ARTICLES.sub("", text))


def normalize_name(text: str | None) -> str:
    """Return the matching key for an artist, venue, or alias name.

    ``normalize_name("The Beatles") == normalize_name("beatles") == "beatles"``.

    Article stripping is repeated until the key stops changing, because
    joining the remaining words can form a new standalone article
    (``"th the e"`` -> ``"the"``).  That makes the function idempotent.
    A name made only of articles (``"The The"``) keeps its letters rather
    than collapsing to an empty key.
    """
    base = normalize_text(text)
    key = _strip_articles(base)
    while True:
        stripped = _strip_articles(key)
        if stripped == key:
            break
        key = stripped
    if not key:
        key = _WHITESPACE.sub("", base)
    return key


def normalize_date(value: date | datetime | str | None) -> date | None:
    """Parse a provider date into a plain calendar date.

    Accepts :class:`date`, :class:`datetime` (its date part is kept as-is,
    no time-zone shifting), ISO-8601 strings, and the formats in
    ``_DATE_FORMATS``.  Returns ``None`` when the value cannot be parsed.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    raw = value.strip()
    if not raw:
        return None

    try:
        # "2024-03-01" and "2024-03-01T20:00:00Z" both land here.
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
    except ValueError:
        pass

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    return None


def format_provider_date(value: date) -> str:
    """Format a date as ``dd-MM-yyyy``, the shape setlist.fm expects."""
    return value.strftime("%d-%m-%Y")
