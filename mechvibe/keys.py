"""Keystroke classification.

Maps a browser-style key label (``KeyboardEvent.key``) and physical key code
(``KeyboardEvent.code``) onto the coarse categories that select per-key sound
adjustments.
"""

from __future__ import annotations

import re
from enum import Enum

_DIGIT = re.compile(r"[0-9]")
_FUNCTION_KEY = re.compile(r"F(?:[1-9]|1[0-2])")
_MODIFIER_LABELS = frozenset({"Control", "Alt", "Meta"})
_LEFT_LETTERS = re.compile(r"[QWEASDZXC]")
_RIGHT_LETTERS = re.compile(r"[UIOPJKLNM]")

SIDE_PAN = 0.3


class KeyCategory(str, Enum):
    DEFAULT = "default"
    SPACEBAR = "spacebar"
    ENTER = "enter"
    BACKSPACE = "backspace"
    SHIFT = "shift"
    CAPSLOCK = "capslock"
    TAB = "tab"
    MODIFIER = "modifier"
    DIGIT = "digit"
    FKEY = "fkey"

    @classmethod
    def coerce(cls, value: KeyCategory | str | None) -> KeyCategory:
        """Return the matching category, or ``DEFAULT`` for anything unknown."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.DEFAULT


def classify(key_label: str, key_code: str = "") -> KeyCategory:
    if key_label == " ":
        return KeyCategory.SPACEBAR
    if key_label == "Enter":
        return KeyCategory.ENTER
    if key_label == "Backspace":
        return KeyCategory.BACKSPACE
    if key_label == "Shift" or "Shift" in key_code:
        return KeyCategory.SHIFT
    if key_label == "Tab":
        return KeyCategory.TAB
    if key_label == "CapsLock":
        return KeyCategory.CAPSLOCK
    if key_label in _MODIFIER_LABELS:
        return KeyCategory.MODIFIER
    if _DIGIT.fullmatch(key_label):
        return KeyCategory.DIGIT
    if _FUNCTION_KEY.fullmatch(key_label):
        return KeyCategory.FKEY
    return KeyCategory.DEFAULT


def pan_for_key(key_label: str, key_code: str = "") -> float:
    """Rough left/right position of a key on a US layout, in [-1, 1]."""
    letter = key_label.upper()
    if "Left" in key_code or _LEFT_LETTERS.fullmatch(letter):
        return -SIDE_PAN
    if "Right" in key_code or _RIGHT_LETTERS.fullmatch(letter):
        return SIDE_PAN
    return 0.0
