from __future__ import annotations

import wcwidth

ELLIPSIS = "…"


def display_width(text: str) -> int:
    """Terminal columns taken by ``text``; unprintable characters count as one."""
    width = wcwidth.wcswidth(text)
    return width if width >= 0 else len(text)


def truncate_and_pad(text: str, target_width: int) -> str:
    """
    Fit ``text`` into exactly ``target_width`` columns, cutting it with an
    ellipsis when too long. Wide (CJK) characters are never split.
    """
    text = text or ""
    width = display_width(text)
    if width <= target_width:
        return text + " " * (target_width - width)

    budget = target_width - display_width(ELLIPSIS)
    kept, used = [], 0
    for char in text:
        char_width = max(wcwidth.wcwidth(char), 0)
        if used + char_width > budget:
            break
        kept.append(char)
        used += char_width

    return "".join(kept) + ELLIPSIS + " " * (budget - used)
