from typing import Callable


def paginate(query, page: int, per_page: int, serialize: Callable[[object], dict] | None = None) -> dict:
    total = query.count()
    rows = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "total":    total,
        "page":     page,
        "per_page": per_page,
        "pages":    (total + per_page - 1) // per_page,
        "results":  [serialize(r) for r in rows] if serialize else rows,
    }
