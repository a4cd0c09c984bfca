"""Canned multilingual goodnight messages.

Farewells bypass the language model: phrases are sampled without
replacement from a fixed table.
"""

from __future__ import annotations

import random
import re
from dataclasses import dataclass

DEFAULT_LANGUAGE_CODE = "en"
DEFAULT_COUNT = 4
MIN_COUNT = 1
MAX_COUNT = 8
LEAD_IN = "Okay chat…"

_CUE_SUBSTRINGS = ("goodnight", "good night")
_WORD_RE = re.compile(r"[a-z0-9']+")


@dataclass(frozen=True, slots=True)
class FarewellPhrase:
    language: str
    code: str
    text: str

    def render(self) -> str:
        return f"{self.text} ({self.language})"


FAREWELL_PHRASES: tuple[FarewellPhrase, ...] = (
    FarewellPhrase("English", "en", "Goodnight!"),
    FarewellPhrase("Spanish", "es", "Buenas noches."),
    FarewellPhrase("French", "fr", "Bonne nuit."),
    FarewellPhrase("Portuguese", "pt", "Boa noite."),
    FarewellPhrase("Italian", "it", "Buona notte."),
    FarewellPhrase("German", "de", "Gute Nacht."),
    FarewellPhrase("Dutch", "nl", "Goedenacht."),
    FarewellPhrase("Swedish", "sv", "God natt."),
    FarewellPhrase("Polish", "pl", "Dobranoc."),
    FarewellPhrase("Russian", "ru", "Спокойной ночи."),
    FarewellPhrase("Greek", "el", "Καληνύχτα."),
    FarewellPhrase("Turkish", "tr", "İyi geceler."),
    FarewellPhrase("Arabic", "ar", "تصبح على خير."),
    FarewellPhrase("Hindi", "hi", "शुभ रात्रि।"),
    FarewellPhrase("Japanese", "ja", "おやすみ。"),
    FarewellPhrase("Korean", "ko", "안녕히 주무세요."),
    FarewellPhrase("Chinese (Simplified)", "zh", "晚安。"),
)


def clamp_count(count: int) -> int:
    return max(MIN_COUNT, min(MAX_COUNT, int(count)))


def build_farewell_message(
    count: int = DEFAULT_COUNT,
    *,
    include_default: bool = True,
    rng: random.Random | None = None,
) -> str:
    """Compose a goodnight message in ``count`` distinct languages.

    Args:
        count: Number of phrases, clamped to [1, 8].
        include_default: When False the English phrase is excluded.
        rng: Source of randomness; pass a seeded ``random.Random`` for
            reproducible output.

    Returns:
        ``"Okay chat… <phrase> (<language>)  <phrase> (<language>) ..."``
    """
    chooser = rng if rng is not None else random.Random()
    pool = [
        phrase
        for phrase in FAREWELL_PHRASES
        if include_default or phrase.code != DEFAULT_LANGUAGE_CODE
    ]
    picked = chooser.sample(pool, min(clamp_count(count), len(pool)))
    return f"{LEAD_IN} " + "  ".join(phrase.render() for phrase in picked)


def is_farewell_cue(transcript: str) -> bool:
    """True when a transcript is a goodnight.

    "goodnight" and "good night" count anywhere in the transcript; "gn"
    only when it is the whole utterance.
    """
    lowered = transcript.lower()
    if any(cue in lowered for cue in _CUE_SUBSTRINGS):
        return True
    return _WORD_RE.findall(lowered) == ["gn"]


__all__ = [
    "FAREWELL_PHRASES",
    "FarewellPhrase",
    "build_farewell_message",
    "clamp_count",
    "is_farewell_cue",
]
