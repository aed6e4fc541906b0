import re
from typing import Optional

_SEPARATORS = re.compile(r"[\s_]+")
_TRAILING_NUMBER = re.compile(r"^(?P<prefix>.*?)-?(?P<number>\d+)$")


def normalize_student_id(raw: Optional[str]) -> str:
    """Collapse legacy student identifier spellings to the canonical form.

    ``" jss1a_7 "`` and ``"JSS1A-007"`` both become ``"JSS1A-007"``. Ids
    without a separator before their trailing digits are left alone so that
    plain codes such as ``"STUDENT001"`` keep their meaning.
    """
    if raw is None:
        return ""
    value = _SEPARATORS.sub("-", raw.strip().upper()).strip("-")
    if "-" not in value:
        return value
    match = _TRAILING_NUMBER.match(value)
    if not match or not match.group("prefix"):
        return value
    return f"{match.group('prefix').rstrip('-')}-{int(match.group('number')):03d}"
