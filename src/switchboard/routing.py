from enum import Enum


class Route(Enum):
    """Per-task fulfilment path."""
    INSTANT_PRICE = "INSTANT_PRICE"
    VIDEO_QUOTE = "VIDEO_QUOTE"
    SITE_VISIT = "SITE_VISIT"


class CallRoute(Enum):
    """Call-level recommendation. MIXED_QUOTE means at least one job needs a visit."""
    INSTANT_PRICE = "INSTANT_PRICE"
    VIDEO_QUOTE = "VIDEO_QUOTE"
    MIXED_QUOTE = "MIXED_QUOTE"


class TrafficLight(Enum):
    GREEN = "green"
    AMBER = "amber"
    RED = "red"


class Method(Enum):
    KEYWORD = "keyword"
    EMBEDDING = "embedding"
    GPT = "gpt"
    HYBRID = "hybrid"
    HEURISTIC = "heuristic"
    NONE = "none"
