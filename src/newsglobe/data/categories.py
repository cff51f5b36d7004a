"""Display normalization for free-text event categories.

The LLM is free to invent categories ("Breaking News - Conflict",
"Tech/Science", ...). The map client only knows a handful of colour groups,
so categories are bucketed by substring matching on the lower-cased text.
"""

DEFAULT_COLOR = "#8b5cf6"
DEFAULT_GROUP = "general"

# Order matters: the first keyword contained in the category wins.
CATEGORY_COLORS: dict[str, str] = {
    "disaster": "#ef4444",
    "conflict": "#dc2626",
    "war": "#dc2626",
    "politics": "#3b82f6",
    "business": "#1d4ed8",
    "finance": "#1d4ed8",
    "uplifting": "#10b981",
    "happy": "#10b981",
    "announcement": "#10b981",
    "science": "#f59e0b",
    "technology": "#f59e0b",
    "tech": "#f59e0b",
    "research": "#d97706",
    "sports": "#ec4899",
    "accident": "#f97316",
}

CATEGORY_GROUPS: dict[str, tuple[str, ...]] = {
    "conflict": ("conflict", "war", "disaster"),
    "politics": ("politics", "business", "finance"),
    "science": ("science", "tech", "research"),
    "sports": ("sports",),
    "uplifting": ("uplifting", "happy", "announcement"),
    "accident": ("accident",),
}


def category_color(category: str | None) -> str:
    """Return the display colour for a category, purple when unknown."""
    if not category:
        return DEFAULT_COLOR
    cat = category.lower()
    for key, color in CATEGORY_COLORS.items():
        if key in cat:
            return color
    return DEFAULT_COLOR


def category_group(category: str | None) -> str:
    """Bucket a free-text category into one of the display groups."""
    if not category:
        return DEFAULT_GROUP
    cat = category.lower()
    for group, keywords in CATEGORY_GROUPS.items():
        if any(keyword in cat for keyword in keywords):
            return group
    return DEFAULT_GROUP
