"""
Structural validation of detailed set scores against a summary score.

A volleyball match is best of five: the first side to win 3 sets takes it.
Sets 1-4 are played to 25 points, the deciding 5th set to 15, always with a
2-point margin. Forms send a fixed five-slot grid, so unplayed sets arrive
as 0-0 placeholders.
"""

from typing import Iterable, Optional, Sequence, Union

from volleyprono.errors import ValidationError

SETS_TO_WIN = 3
MAX_SETS = 5
REGULAR_SET_POINTS = 25
DECIDING_SET_POINTS = 15
MIN_MARGIN = 2

SetPair = tuple[int, int]
RawSet = Union[dict, Sequence[int]]


def as_pairs(set_scores: Optional[Iterable[RawSet]]) -> list[SetPair]:
    """Normalize `[{'home': 25, 'away': 20}, ...]` or `[(25, 20), ...]` into int pairs."""
    if not set_scores:
        return []
    pairs = []
    for raw in set_scores:
        if isinstance(raw, dict):
            pairs.append((int(raw.get("home", 0)), int(raw.get("away", 0))))
        else:
            home, away = raw
            pairs.append((int(home), int(away)))
    return pairs


def as_dicts(pairs: Iterable[SetPair]) -> list[dict]:
    """Inverse of as_pairs, for JSON storage."""
    return [{"home": home, "away": away} for home, away in pairs]


def is_placeholder(pair: SetPair) -> bool:
    return pair[0] == 0 and pair[1] == 0


def strip_placeholders(pairs: Iterable[SetPair]) -> list[SetPair]:
    return [p for p in pairs if not is_placeholder(p)]


def set_threshold(index: int) -> int:
    """Points needed to win the set at 0-based `index`."""
    return DECIDING_SET_POINTS if index == MAX_SETS - 1 else REGULAR_SET_POINTS


def is_decided_summary(home: Optional[int], away: Optional[int]) -> bool:
    """True for 3-0, 3-1, 3-2 and their mirrors."""
    if home is None or away is None:
        return False
    if not (0 <= home <= SETS_TO_WIN and 0 <= away <= SETS_TO_WIN):
        return False
    return home != away and max(home, away) == SETS_TO_WIN


def validate_summary(home: int, away: int) -> Optional[str]:
    if not (0 <= home <= SETS_TO_WIN and 0 <= away <= SETS_TO_WIN):
        return f"Sets won must be between 0 and {SETS_TO_WIN} ({home}-{away} is not valid)"
    if not is_decided_summary(home, away):
        return f"The final score {home}-{away} is not possible: exactly one team must win {SETS_TO_WIN} sets"
    return None


def _check_set(index: int, pair: SetPair) -> Optional[str]:
    home, away = pair
    number = index + 1
    if home < 0 or away < 0:
        return f"Set {number} cannot have negative points ({home}-{away})"
    if home == away:
        return f"Set {number} cannot end in a tie ({home}-{away})"

    threshold = set_threshold(index)
    high, low = max(home, away), min(home, away)
    if high < threshold:
        suffix = " (15 points for the 5th set)" if threshold == DECIDING_SET_POINTS else ""
        return f"Set {number} needs at least {threshold} points for the winner{suffix}"
    if high - low < MIN_MARGIN:
        return f"Set {number} needs a margin of at least {MIN_MARGIN} points ({home}-{away} is not valid)"
    return None


def _validate(
    predicted_home: int,
    predicted_away: int,
    set_scores: Optional[Iterable[RawSet]],
    team_names: tuple[str, str],
) -> Optional[tuple[str, Optional[int]]]:
    """Return (reason, 1-based set index or None) for the first violated rule."""
    reason = validate_summary(predicted_home, predicted_away)
    if reason:
        return reason, None

    pairs = as_pairs(set_scores)
    if not pairs:
        return None
    if len(pairs) > MAX_SETS:
        return f"A match has at most {MAX_SETS} sets, got {len(pairs)}", None

    home_won = away_won = 0
    first_empty = None
    for i, pair in enumerate(pairs):
        if is_placeholder(pair):
            if first_empty is None:
                first_empty = i
            continue

        if first_empty is not None:
            return (
                f"Set {first_empty + 1} is empty but set {i + 1} is filled in; sets must be entered in order",
                first_empty + 1,
            )

        reason = _check_set(i, pair)
        if reason:
            return reason, i + 1

        if pair[0] > pair[1]:
            home_won += 1
        else:
            away_won += 1

        if home_won == SETS_TO_WIN or away_won == SETS_TO_WIN:
            for j in range(i + 1, len(pairs)):
                if not is_placeholder(pairs[j]):
                    return (
                        f"The match is over after {i + 1} set(s) since a team won {SETS_TO_WIN} sets; "
                        f"set {j + 1} cannot be played",
                        j + 1,
                    )
            break

    home_name, away_name = team_names
    if home_won != predicted_home or away_won != predicted_away:
        return (
            f"The set scores do not match the announced result ({predicted_home}-{predicted_away}). "
            f"In the detailed scores, {home_name} won {home_won} set(s) and {away_name} won {away_won} set(s).",
            None,
        )

    total = predicted_home + predicted_away
    filled = len(strip_placeholders(pairs))
    if filled != total:
        return (
            f"The final score {predicted_home}-{predicted_away} requires exactly {total} played set(s), "
            f"but {filled} set(s) were filled in.",
            None,
        )
    return None


def validate_set_scores(
    predicted_home: int,
    predicted_away: int,
    set_scores: Optional[Iterable[RawSet]],
    team_names: tuple[str, str] = ("Home", "Away"),
) -> Optional[str]:
    """
    Check detailed set scores against a claimed summary.

    Returns None when consistent, otherwise a human-readable reason naming
    the failed rule and (where it applies) the 1-based set number. An empty
    or missing list is valid: it means no detailed guess was given.
    """
    failure = _validate(predicted_home, predicted_away, set_scores, team_names)
    return failure[0] if failure else None


def ensure_valid_set_scores(
    predicted_home: int,
    predicted_away: int,
    set_scores: Optional[Iterable[RawSet]],
    team_names: tuple[str, str] = ("Home", "Away"),
) -> None:
    """Raise ValidationError (with set_index when known) for invalid scores."""
    failure = _validate(predicted_home, predicted_away, set_scores, team_names)
    if failure:
        reason, set_index = failure
        raise ValidationError(reason, set_index=set_index)
