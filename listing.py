"""
Query building for the paginated list endpoints (orders, users, categories, products).

Raw query strings go through ``normalize_list_params`` (page/limit/sort/order),
a per-entity ``build_*_filter`` (search, enum, range clauses) and
``resolve_sort``; ``paginate`` then runs the count + bounded find and shapes
the page metadata. The ``*_stats`` helpers aggregate over the same filter so
summaries describe the filtered view, not the whole collection.

Nothing here rejects a request: unparseable or out-of-range input is clamped
or the clause is dropped.
"""

import math
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, List, Mapping, Optional

from pymongo import ASCENDING, DESCENDING
from pymongo.collection import Collection
from pymongo.database import Database

from config import (
    DEFAULT_LIMIT,
    DEFAULT_ORDER,
    DEFAULT_PAGE,
    DEFAULT_SORT,
    MAX_LIMIT,
    MAX_PAGE,
    MIN_LIMIT,
    MIN_PAGE,
)
from schemas import ORDER_STATUSES, ROLES
from utils import maybe_object_id

PRODUCT_SEARCH_FIELDS = ("name", "description")
CATEGORY_SEARCH_FIELDS = ("name", "description")
USER_SEARCH_FIELDS = ("name", "email", "mobile")

ORDER_SORT_FIELDS = frozenset({"createdAt", "updatedAt", "orderDate", "totalAmount", "status"})
PRODUCT_SORT_FIELDS = frozenset({"createdAt", "updatedAt", "name", "price", "stock", "status", "featured"})
CATEGORY_SORT_FIELDS = frozenset({"createdAt", "updatedAt", "name"})
USER_SORT_FIELDS = frozenset({"createdAt", "updatedAt", "name", "email", "role"})

ANY = "all"


@dataclass(frozen=True)
class ListParams:
    page: int
    limit: int
    sort: str
    order: str

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


@dataclass(frozen=True)
class SortSpec:
    field: str
    direction: int

    def as_pymongo(self) -> list:
        # _id breaks ties so consecutive pages never overlap
        return [(self.field, self.direction), ("_id", self.direction)]


DEFAULT_SORT_SPEC = SortSpec(DEFAULT_SORT, DESCENDING if DEFAULT_ORDER == "desc" else ASCENDING)


# -------------------- Normalizer --------------------

def _to_int(raw, default: int) -> int:
    if raw is None:
        return default
    try:
        return int(float(str(raw).strip()))
    except (TypeError, ValueError, OverflowError):
        return default


def normalize_list_params(query: Mapping[str, str]) -> ListParams:
    """Turn raw query strings into bounded pagination and sort parameters."""
    page = min(MAX_PAGE, max(MIN_PAGE, _to_int(query.get("page"), DEFAULT_PAGE)))
    limit = min(MAX_LIMIT, max(MIN_LIMIT, _to_int(query.get("limit"), DEFAULT_LIMIT)))

    raw_sort = (query.get("sort") or "").strip()
    raw_order = (query.get("order") or "").strip().lower()
    if raw_order:
        order = "asc" if raw_order == "asc" else "desc"
    elif raw_sort:
        order = "asc"
    else:
        order = DEFAULT_ORDER
    return ListParams(page=page, limit=limit, sort=raw_sort or DEFAULT_SORT, order=order)


# -------------------- Sort --------------------

def resolve_sort(token: Optional[str], allowed: Iterable[str], order: str = "asc") -> SortSpec:
    """
    Decode a sort token such as ``-price`` into a field and direction.

    A leading ``-`` always means descending; otherwise ``order`` decides.
    Fields outside ``allowed`` fall back to the default (createdAt, newest first).
    """
    token = (token or "").strip()
    if token.startswith("-"):
        field, direction = token[1:], DESCENDING
    else:
        field, direction = token, DESCENDING if order == "desc" else ASCENDING
    if field not in allowed:
        return DEFAULT_SORT_SPEC
    return SortSpec(field, direction)


# -------------------- Filters --------------------

def _is_set(value: Optional[str]) -> bool:
    return value is not None and value.strip() not in ("", ANY)


def _to_float(raw: Optional[str]) -> Optional[float]:
    if raw is None or not raw.strip():
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def _parse_date(raw: Optional[str], end_of_day: bool = False) -> Optional[datetime]:
    if raw is None or not raw.strip():
        return None
    raw = raw.strip()
    try:
        day = date.fromisoformat(raw)
    except ValueError:
        day = None
    if day is not None:
        start = datetime(day.year, day.month, day.day)
        return start + timedelta(days=1, milliseconds=-1) if end_of_day else start
    try:
        value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def range_clause(low, high) -> dict:
    clause = {}
    if low is not None:
        clause["$gte"] = low
    if high is not None:
        clause["$lte"] = high
    return clause


def search_clause(term: Optional[str], fields: Iterable[str]) -> dict:
    """Case-insensitive substring match of ``term`` over ``fields``; the term is matched literally."""
    term = (term or "").strip()
    if not term:
        return {}
    pattern = re.escape(term)
    return {"$or": [{f: {"$regex": pattern, "$options": "i"}} for f in fields]}


def _date_range(query: Mapping[str, str]) -> dict:
    return range_clause(
        _parse_date(query.get("startDate")),
        _parse_date(query.get("endDate"), end_of_day=True),
    )


def build_product_filter(query: Mapping[str, str]) -> dict:
    filt = {}
    category = query.get("category")
    if _is_set(category):
        filt["category"] = maybe_object_id(category.strip()) or category.strip()
    featured = query.get("featured")
    if _is_set(featured):
        filt["featured"] = featured.strip().lower() == "true"
    status = query.get("status")
    if _is_set(status):
        filt["status"] = status.strip()
    price = range_clause(_to_float(query.get("minPrice")), _to_float(query.get("maxPrice")))
    if price:
        filt["price"] = price
    created = _date_range(query)
    if created:
        filt["createdAt"] = created
    filt.update(search_clause(query.get("search"), PRODUCT_SEARCH_FIELDS))
    return filt


def build_category_filter(query: Mapping[str, str]) -> dict:
    filt = {}
    created = _date_range(query)
    if created:
        filt["createdAt"] = created
    filt.update(search_clause(query.get("search"), CATEGORY_SEARCH_FIELDS))
    return filt


def build_user_filter(query: Mapping[str, str]) -> dict:
    filt = {}
    role = query.get("role")
    if _is_set(role):
        filt["role"] = role.strip()
    created = _date_range(query)
    if created:
        filt["createdAt"] = created
    filt.update(search_clause(query.get("search"), USER_SEARCH_FIELDS))
    return filt


def build_order_filter(database: Database, query: Mapping[str, str]) -> dict:
    """
    Orders search by id or by customer: a term that is an ObjectId matches the
    order itself, and any user whose name/email/mobile contains the term
    contributes all of their orders.
    """
    filt = {}
    status = query.get("status")
    if _is_set(status):
        filt["status"] = status.strip()
    ordered = _date_range(query)
    if ordered:
        filt["orderDate"] = ordered

    term = (query.get("search") or "").strip()
    if term:
        branches = []
        order_id = maybe_object_id(term)
        if order_id is not None:
            branches.append({"_id": order_id})
        user_ids = [u["_id"] for u in database["user"].find(search_clause(term, USER_SEARCH_FIELDS), {"_id": 1})]
        if user_ids:
            branches.append({"user": {"$in": user_ids}})
        # $or must not be empty; an impossible clause keeps the result empty
        filt["$or"] = branches or [{"_id": {"$in": []}}]
    return filt


# -------------------- Paginator --------------------

def page_response(data: List[dict], total: int, page: int, limit: int) -> dict:
    total_pages = math.ceil(total / limit)
    return {
        "data": data,
        "count": total,
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": total_pages,
            "hasNextPage": page < total_pages,
            "hasPrevPage": page > 1,
        },
    }


def paginate(
    collection: Collection,
    filt: dict,
    params: ListParams,
    sort: SortSpec,
    projection: Optional[dict] = None,
) -> dict:
    total = collection.count_documents(filt)
    cursor = collection.find(filt, projection).sort(sort.as_pymongo()).skip(params.skip).limit(params.limit)
    return page_response(list(cursor), total, params.page, params.limit)


# -------------------- Aggregates --------------------

def order_status_stats(collection: Collection, filt: dict) -> dict:
    """Per-status order counts plus revenue, where cancelled orders earn nothing."""
    pipeline = [
        {"$match": filt},
        {
            "$group": {
                "_id": "$status",
                "count": {"$sum": 1},
                "revenue": {"$sum": {"$cond": [{"$eq": ["$status", "cancelled"]}, 0, "$totalAmount"]}},
            }
        },
    ]
    stats = {status: 0 for status in ORDER_STATUSES}
    total = 0
    revenue = 0
    for row in collection.aggregate(pipeline):
        if row["_id"] in stats:
            stats[row["_id"]] = row["count"]
        total += row["count"]
        revenue += row.get("revenue") or 0
    stats["total"] = total
    stats["totalRevenue"] = round(revenue, 2)
    return stats


def user_role_stats(collection: Collection, filt: dict) -> dict:
    pipeline = [{"$match": filt}, {"$group": {"_id": "$role", "count": {"$sum": 1}}}]
    stats = {role: 0 for role in ROLES}
    total = 0
    for row in collection.aggregate(pipeline):
        if row["_id"] in stats:
            stats[row["_id"]] = row["count"]
        total += row["count"]
    stats["total"] = total
    return stats


def with_product_counts(products: Collection, categories: List[dict]) -> List[dict]:
    if not categories:
        return categories
    ids = [c["_id"] for c in categories]
    pipeline = [
        {"$match": {"category": {"$in": ids}}},
        {"$group": {"_id": "$category", "count": {"$sum": 1}}},
    ]
    counts = {row["_id"]: row["count"] for row in products.aggregate(pipeline)}
    return [{**c, "productCount": counts.get(c["_id"], 0)} for c in categories]
