"""Drops utterances the transcriber rendered in a script the line never uses.

Urdu speech is occasionally transcribed in Devanagari or Gurmukhi; those
utterances are discarded rather than recorded.
"""

from __future__ import annotations

import re

DISALLOWED_SCRIPT = re.compile("[\u0900-\u097F\u0A00-\u0A7F]")


def contains_disallowed_script(text: str) -> bool:
    return DISALLOWED_SCRIPT.search(text) is not None
