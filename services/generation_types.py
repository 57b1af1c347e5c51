"""
Generation type normalization.

Older clients stored some types under legacy names; reads and writes go
through ``normalize_generation_type`` so the canonical name is what the
rest of the system sees.
"""

# legacy stored value -> canonical value
GENERATION_TYPE_ALIASES: dict[str, str] = {
    "logo-generation": "logo",
}

DEFAULT_GENERATION_TYPE = "text-to-image"


def normalize_generation_type(raw: str | None) -> str:
    """
    Map a raw type value to its canonical form.

    Examples:
        "Logo_Generation" -> "logo"
        " text_to_image " -> "text-to-image"
    """
    if not raw:
        return DEFAULT_GENERATION_TYPE
    value = raw.strip().lower().replace("_", "-")
    if not value:
        return DEFAULT_GENERATION_TYPE
    return GENERATION_TYPE_ALIASES.get(value, value)


def legacy_names(canonical: str) -> list[str]:
    """Stored values that normalize to ``canonical`` besides itself."""
    return [legacy for legacy, target in GENERATION_TYPE_ALIASES.items() if target == canonical]


def expand_generation_type_filter(value: str | list[str] | None) -> list[str] | None:
    """
    Build the set of stored values to query for a type filter.

    Requesting ``logo`` (alone or inside a list) also matches records stored
    as ``logo-generation``.

    Returns:
        Sorted list of stored values, or None when no filter applies
    """
    if value is None:
        return None

    raw_values = [value] if isinstance(value, str) else list(value)
    stored: set[str] = set()
    for raw in raw_values:
        if not raw or not str(raw).strip():
            continue
        canonical = normalize_generation_type(str(raw))
        stored.add(canonical)
        stored.update(legacy_names(canonical))

    return sorted(stored) or None
