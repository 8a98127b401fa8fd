"""Neutralize prompt-injection markers in analyzed message text.

The text a user submits is embedded verbatim inside ``<message>`` tags in
the analysis prompt. Before that, role markers, the prompt's own
delimiter tags and "ignore previous instructions" style phrases are
replaced with placeholders. Letters, accents and emoji pass through.
"""

import re
import unicodedata

# =============================================================================
# Invisible Characters
# =============================================================================

# Stripped first so they cannot split a keyword and dodge the rules below:
# soft hyphen, zero-width/LRM/RLM, BiDi embeddings and isolates, word
# joiner, BOM and the Unicode tag block.
_INVISIBLE = re.compile(
    "[\u00ad\u200b-\u200f\u202a-\u202e\u2060-\u2064\u2066-\u2069\ufeff"
    "\U000e0001\U000e0020-\U000e007f]"
)

# C0 controls and DEL, keeping tab, newline and carriage return
_CONTROL = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

# =============================================================================
# Injection Rules
# =============================================================================

_TAG = "[TAG]"
_FILTERED = "[FILTERED]"
_FILTERED_PREFIX = "[FILTERED]:"

_I = re.IGNORECASE
_IM = re.IGNORECASE | re.MULTILINE

_RULES: list[tuple[re.Pattern[str], str]] = [
    # Line-leading role prefixes
    (re.compile(r"^\s*SYSTEM\s*:", _IM), _FILTERED_PREFIX),
    (re.compile(r"^\s*(?:Human|Assistant)\s*:", _IM), _FILTERED_PREFIX),
    # Role and delimiter tags
    (re.compile(r"<\s*/?\s*(?:system|user|assistant)\s*>", _I), _TAG),
    (re.compile(r"<\s*/?\s*(?:message|image_refs)(?:\s[^>]*)?\s*>", _I), _TAG),
    (re.compile(r"<\|(?:system|user|assistant|im_start|im_end)\|>", _I), _TAG),
    (re.compile(r"\[/?INST\]", _I), _FILTERED),
    # Override phrases
    (re.compile(r"ignore\s+(?:all\s+)?previous\s+instructions?", _I), _FILTERED),
    (re.compile(r"disregard\s+(?:all\s+)?(?:prior|previous)", _I), _FILTERED),
    (re.compile(r"new\s+instructions?\s*:", _I), _FILTERED_PREFIX),
]


def sanitize_llm_input(text: str) -> str:
    """Return ``text`` safe to embed in an analysis prompt.

    NFKC-normalizes (folding fullwidth look-alikes), strips invisible and
    control characters, then applies the injection rules in order.
    """
    if not text:
        return text

    cleaned = unicodedata.normalize("NFKC", text)
    cleaned = _CONTROL.sub("", _INVISIBLE.sub("", cleaned))
    for pattern, replacement in _RULES:
        cleaned = pattern.sub(replacement, cleaned)
    return cleaned
