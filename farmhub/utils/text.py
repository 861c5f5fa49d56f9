import re
import unicodedata

_TRUTHY = {"true", "1", "yes", "on", "y"}
_FALSY = {"false", "0", "no", "off", "n", ""}


def slugify(value: str) -> str:
    value = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    value = re.sub(r"[^\w\s-]", "", value.lower())
    return re.sub(r"[-\s_]+", "-", value).strip("-") or "item"


def unique_slug(db, model, source: str, exclude_id: int | None = None) -> str:
    """slugify(source), suffixed -2, -3, ... until no other row of `model` has it."""
    base = slugify(source)
    candidate = base
    n = 2
    while True:
        query = db.query(model.id).filter(model.slug == candidate)
        if exclude_id is not None:
            query = query.filter(model.id != exclude_id)
        if not query.first():
            return candidate
        candidate = f"{base}-{n}"
        n += 1


def parse_tags(raw) -> list[str]:
    """Accepts a list, a comma separated string, or a list of such strings."""
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = [raw]
    tags = []
    for item in raw:
        for part in str(item).split(","):
            part = part.strip()
            if part and part not in tags:
                tags.append(part)
    return tags


def parse_bool(raw, default: bool | None = None) -> bool | None:
    """Lenient boolean for multipart fields ('on', 'yes', '1', ...)."""
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    value = str(raw).strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ValueError(f"'{raw}' is not a valid boolean")
