"""Fix suggestions for dry-run failures, looked up from the error text."""

from __future__ import annotations

import re

# First match wins; keep specific patterns above general ones.
_SUGGESTIONS: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(r"integration '([^']+)' is not (?:enabled|allowed)", re.IGNORECASE),
        "Connect the {0} integration in workspace settings or add it to the agent's "
        "allowed integrations.",
    ),
    (
        re.compile(r"template '([^']+)' (?:does not exist|was not found)", re.IGNORECASE),
        "Pick an existing template or recreate template {0}, then save the agent again.",
    ),
    (
        re.compile(r"no parsed actions", re.IGNORECASE),
        "Edit and save the agent instructions to generate parsed actions.",
    ),
    (
        re.compile(r"credit|usage", re.IGNORECASE),
        "Reduce the schedule frequency or narrow the audience of bulk actions.",
    ),
    (
        re.compile(r"rate limit|too many requests", re.IGNORECASE),
        "Add a wait step between actions to stay under the provider's rate limit.",
    ),
)


def suggest_fix(error_text: str) -> str | None:
    """Return a suggestion for an error message, or None when nothing applies."""
    for pattern, suggestion in _SUGGESTIONS:
        match = pattern.search(error_text)
        if match:
            return suggestion.format(*match.groups())
    return None
