"""
Team name normalization for matching observations to stored matches.

Stored names and observed names both go through `normalize_team_name`, and
the windowed lookup compares the results exactly. The transform is
deliberately shallow (no accent stripping, no token removal): club
prefixes like "VB" or "Volley" distinguish real teams in French leagues.

Examples:
    "  paris   volley "     -> "Paris Volley"
    "TOURS VB"              -> "Tours Vb"
    "Saint-Nazaire  V.B.A." -> "Saint-Nazaire V.B.A."
"""

import re

_WHITESPACE = re.compile(r"\s+")


def normalize_team_name(name: str) -> str:
    """Collapse whitespace, then title-case."""
    if not name:
        return ""
    return _WHITESPACE.sub(" ", name).strip().title()
