import re

ROUTE_ALIASES = [
    (re.compile(r"\bEASTRAND\b"), "EAST RAND"),
    (re.compile(r"\bEASTR\s+RAND\b"), "EAST RAND"),
    (re.compile(r"\bWESTRAND\b"), "WEST RAND"),
    (re.compile(r"\bPRETORIA\b"), "PTA"),
    (re.compile(r"\bJHB\s+SOUTH\s+CENTRAL\b"), "JHB SOUTH"),
    (re.compile(r"\bJHB\s+CENTRAL\s+NORTH\b"), "JHB CENTRAL"),
]

# Ordered: first match wins, so the specific JHB zones sit above the bare JHB rule
# and the EAST/WEST RAND rules above the bare EAST/WEST ones.
FAMILY_RULES = [
    (re.compile(r"^JHB\s+SOUTH\b"), "JHB SOUTH"),
    (re.compile(r"^JHB\s+CENTRAL\b"), "JHB CENTRAL"),
    (re.compile(r"^JHB\s+NORTH\b"), "JHB NORTH"),
    (re.compile(r"^JHB\s+WEST\b"), "JHB WEST"),
    (re.compile(r"^JHB\s+EAST\b"), "JHB EAST"),
    (re.compile(r"^JHB\b"), "JHB"),
    (re.compile(r"^EAST\s*RAND\b"), "EAST RAND"),
    (re.compile(r"^WEST\s*RAND\b"), "WEST RAND"),
    (re.compile(r"^NORTH\s*WEST\b"), "NORTH WEST"),
    (re.compile(r"^SOUTH\s*EAST\b"), "SOUTH EAST"),
    (re.compile(r"^SOUTH\s*WEST\b"), "SOUTH WEST"),
    (re.compile(r"^PTA\b"), "PTA"),
    (re.compile(r"^VAAL\b"), "VAAL"),
    (re.compile(r"^CENTURION\b"), "CENTURION"),
    (re.compile(r"^MPUMALANGA\b"), "MPUMALANGA"),
    (re.compile(r"^WEST\b(?!\s*RAND)"), "WEST"),
    (re.compile(r"^EAST\b(?!\s*RAND)"), "EAST"),
]

QUALIFIER_TOKENS = {"PARK", "RIVER", "RAND", "NORTH", "SOUTH", "EAST", "WEST", "CENTRAL"}

_SEPARATORS_RE = re.compile(r"[-_/]+")
_WHITESPACE_RE = re.compile(r"\s+")
_NON_WORD_RE = re.compile(r"[^A-Z\s]+")


def normalize_route_name(value):
    text = str(value or "").upper()
    text = _SEPARATORS_RE.sub(" ", text)
    text = _WHITESPACE_RE.sub(" ", text).strip()
    for pattern, replacement in ROUTE_ALIASES:
        text = pattern.sub(replacement, text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def family_from(route_name):
    """Macro-route family for a route or suburb name ("" when unknown)."""
    normalized = normalize_route_name(route_name)
    if not normalized:
        return ""

    for pattern, family in FAMILY_RULES:
        if pattern.search(normalized):
            return family

    tokens = _NON_WORD_RE.sub("", normalized).split()
    if not tokens:
        return normalized
    if len(tokens) == 1:
        return tokens[0]
    if tokens[1] in QUALIFIER_TOKENS:
        return f"{tokens[0]} {tokens[1]}"
    return tokens[0]
