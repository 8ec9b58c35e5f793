"""Team-name normalization shared by team resolution and instrument search."""
import re

_NON_ALNUM_SPACE = re.compile(r"[^a-z0-9\s]")
_NON_ALNUM = re.compile(r"[^a-z0-9]")
_SPACES = re.compile(r"\s+")


def normalize_key(name: str) -> str:
    """Lowercase, strip punctuation, collapse whitespace."""
    text = _NON_ALNUM_SPACE.sub("", (name or "").lower())
    return _SPACES.sub(" ", text).strip()


def compact(name: str) -> str:
    """Normalized form with all separators removed, for substring matching."""
    return _NON_ALNUM.sub("", (name or "").lower())


def nickname(name: str) -> str:
    """Last word of a team name ("Boston Celtics" -> "celtics")."""
    parts = normalize_key(name).split(" ")
    return parts[-1] if parts else ""


def mentions_team(text: str, team: str) -> bool:
    """True if ``text`` names ``team`` in full or by a nickname longer than two letters."""
    lowered = (text or "").lower()
    if compact(team) and compact(team) in compact(text):
        return True
    nick = nickname(team)
    return len(nick) > 2 and re.search(rf"\b{re.escape(nick)}\b", lowered) is not None
