"""RPM version ordering.

Implements the segment comparison rpm itself uses (rpmvercmp), so that
``1.10`` sorts after ``1.9`` and ``1.0~rc1`` sorts before ``1.0``.
"""

import string

_DIGITS = frozenset(string.digits)
_ALNUM = frozenset(string.ascii_letters + string.digits)


def _take(value: str, pos: int, charset: frozenset) -> int:
    """Return the index just past the run of ``charset`` starting at ``pos``."""
    end = pos
    while end < len(value) and value[end] in charset:
        end += 1
    return end


def rpm_version_compare(a: str, b: str) -> int:
    """Compare two version (or release) strings the way rpm does.

    Args:
        a: First version string
        b: Second version string

    Returns:
        1 if ``a`` is newer, -1 if ``b`` is newer, 0 if they are equal
    """
    if a == b:
        return 0

    i = j = 0
    len_a, len_b = len(a), len(b)

    while i < len_a or j < len_b:
        # Separators carry no ordering, except tilde and caret
        while i < len_a and a[i] not in _ALNUM and a[i] not in "~^":
            i += 1
        while j < len_b and b[j] not in _ALNUM and b[j] not in "~^":
            j += 1

        # Tilde sorts before everything, even the end of the string
        a_tilde = i < len_a and a[i] == "~"
        b_tilde = j < len_b and b[j] == "~"
        if a_tilde or b_tilde:
            if not a_tilde:
                return 1
            if not b_tilde:
                return -1
            i += 1
            j += 1
            continue

        # Caret sorts after the end of the string but before anything else
        a_caret = i < len_a and a[i] == "^"
        b_caret = j < len_b and b[j] == "^"
        if a_caret or b_caret:
            if i >= len_a:
                return -1
            if j >= len_b:
                return 1
            if not a_caret:
                return 1
            if not b_caret:
                return -1
            i += 1
            j += 1
            continue

        if i >= len_a or j >= len_b:
            break

        numeric = a[i] in _DIGITS
        charset = _DIGITS if numeric else frozenset(string.ascii_letters)
        end_a = _take(a, i, charset)
        end_b = _take(b, j, charset)
        seg_a, seg_b = a[i:end_a], b[j:end_b]
        i, j = end_a, end_b

        # Numeric segments are newer than alphabetic ones
        if not seg_b:
            return 1 if numeric else -1

        if numeric:
            seg_a = seg_a.lstrip("0")
            seg_b = seg_b.lstrip("0")
            if len(seg_a) != len(seg_b):
                return 1 if len(seg_a) > len(seg_b) else -1

        if seg_a != seg_b:
            return 1 if seg_a > seg_b else -1

    if i >= len_a and j >= len_b:
        return 0
    return -1 if i >= len_a else 1
