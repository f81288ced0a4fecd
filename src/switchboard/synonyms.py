import re

# Canonical term -> equivalents. Lookups work in both directions.
SYNONYM_MAP = {
    # Plumbing
    "tap": ["faucet", "mixer", "spout", "taps"],
    "dripping": ["leaking", "drip", "leak", "running"],
    "toilet": ["loo", "cistern", "wc", "flush"],
    "blocked": ["clogged", "draining slow", "not draining", "overflowing"],
    "sink": ["basin", "washbasin"],
    "shower": ["mixer"],
    "bath": ["bathtub"],
    "seal": ["silicone", "sealant", "mastic", "re-seal", "reseal"],
    # Electrical
    "light": ["lamp", "bulb", "fitting", "fixture", "chandelier"],
    "socket": ["outlet", "plug", "power point"],
    "switch": ["dimmer"],
    # Mounting
    "mount": ["hang", "install", "fix", "put up"],
    "tv": ["television", "screen", "monitor"],
    "mirror": ["glass"],
    "blind": ["curtain", "shade", "roller", "venetian", "roman"],
    "shelf": ["shelves", "racking", "bookcase"],
    "picture": ["frame", "painting", "art"],
    # Flatpack
    "assemble": ["build", "put together", "construct"],
    "furniture": ["wardrobe", "bed", "table", "chair", "desk", "ikea", "pax", "malm"],
}


def _build_reverse_map(table: dict) -> dict:
    reverse: dict[str, set[str]] = {}
    for key, values in table.items():
        for value in values:
            reverse.setdefault(value, set()).add(key)
    return reverse


_REVERSE_MAP = _build_reverse_map(SYNONYM_MAP)


def tokenize(text: str) -> list[str]:
    """Lowercase, drop punctuation, split on whitespace."""
    cleaned = re.sub(r"[^a-z0-9\s]", "", text.lower())
    return [tok for tok in cleaned.split() if tok]


def expand_token(token: str) -> set[str]:
    """Return the token plus every term the table treats as equivalent."""
    token = token.lower()
    expanded = {token}
    expanded.update(SYNONYM_MAP.get(token, ()))
    expanded.update(_REVERSE_MAP.get(token, ()))
    return expanded


def expand_with_synonyms(text: str) -> list[str]:
    """Tokenize ``text`` and expand every token, preserving first-seen order."""
    seen: dict[str, None] = {}
    tokens = tokenize(text)
    for token in tokens:
        seen.setdefault(token, None)
    for token in tokens:
        for term in sorted(expand_token(token)):
            seen.setdefault(term, None)
    return list(seen)
