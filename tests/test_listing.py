import math
import re
from datetime import datetime, timedelta

import pytest
from pymongo import ASCENDING, DESCENDING

from conftest import make_category, make_product, make_user
from database import create_document, utcnow
from listing import (
    ORDER_SORT_FIELDS,
    PRODUCT_SORT_FIELDS,
    ListParams,
    SortSpec,
    build_category_filter,
    build_order_filter,
    build_product_filter,
    build_user_filter,
    normalize_list_params,
    order_status_stats,
    page_response,
    paginate,
    resolve_sort,
    user_role_stats,
    with_product_counts,
)


# -------------------- Normalizer --------------------

def test_defaults():
    assert normalize_list_params({}) == ListParams(page=1, limit=10, sort="createdAt", order="desc")


@pytest.mark.parametrize(
    "page, limit, expected",
    [
        ("-3", "5", (1, 5)),
        ("abc", "xyz", (1, 10)),
        ("0", "0", (1, 1)),
        ("2.7", "500", (2, 100)),
        ("4", "-5", (4, 1)),
        ("nan", "inf", (1, 10)),
        ("", "", (1, 10)),
        (" 3 ", "100", (3, 100)),
    ],
)
def test_bad_page_and_limit_clamp(page, limit, expected):
    params = normalize_list_params({"page": page, "limit": limit})
    assert (params.page, params.limit) == expected
    assert params.page >= 1
    assert 1 <= params.limit <= 100


@pytest.mark.parametrize("page", ["1e30", "99999999999999999999999", str(10**15 + 1)])
def test_huge_page_is_capped(page):
    params = normalize_list_params({"page": page, "limit": "100"})
    assert params.page == 10**15
    assert params.skip < 2**63


def test_order_follows_sort_token():
    assert normalize_list_params({"sort": "price"}).order == "asc"
    assert normalize_list_params({"sort": "price", "order": "DESC"}).order == "desc"
    assert normalize_list_params({"order": "asc"}).order == "asc"
    assert normalize_list_params({"order": "sideways"}).order == "desc"


def test_skip():
    assert ListParams(page=3, limit=20, sort="createdAt", order="desc").skip == 40


# -------------------- Sort --------------------

def test_descending_prefix():
    assert resolve_sort("-price", PRODUCT_SORT_FIELDS) == SortSpec("price", DESCENDING)


def test_plain_token_is_ascending():
    assert resolve_sort("price", PRODUCT_SORT_FIELDS) == SortSpec("price", ASCENDING)


def test_order_applies_to_unprefixed_token():
    assert resolve_sort("name", PRODUCT_SORT_FIELDS, "desc") == SortSpec("name", DESCENDING)
    assert resolve_sort("-name", PRODUCT_SORT_FIELDS, "asc") == SortSpec("name", DESCENDING)


@pytest.mark.parametrize("token", ["bogus", "-bogus", "", None, "-", "password_hash"])
def test_unknown_field_falls_back(token):
    assert resolve_sort(token, PRODUCT_SORT_FIELDS) == SortSpec("createdAt", DESCENDING)


def test_allow_list_is_per_entity():
    assert resolve_sort("-totalAmount", ORDER_SORT_FIELDS) == SortSpec("totalAmount", DESCENDING)
    assert resolve_sort("-totalAmount", PRODUCT_SORT_FIELDS) == SortSpec("createdAt", DESCENDING)


def test_sort_is_deterministic():
    assert resolve_sort("-status", ORDER_SORT_FIELDS) == resolve_sort("-status", ORDER_SORT_FIELDS)


# -------------------- Filters --------------------

def test_empty_query_builds_empty_filter():
    assert build_product_filter({}) == {}
    assert build_category_filter({}) == {}
    assert build_user_filter({}) == {}


def test_search_escapes_metacharacters():
    filt = build_product_filter({"search": "  pi(zz)a*  "})
    pattern = re.escape("pi(zz)a*")
    assert filt["$or"] == [
        {"name": {"$regex": pattern, "$options": "i"}},
        {"description": {"$regex": pattern, "$options": "i"}},
    ]
    assert re.search(pattern, "Best PI(ZZ)A* in town", re.IGNORECASE)
    assert not re.search(pattern, "pizzaaa")


def test_user_search_covers_mobile():
    filt = build_user_filter({"search": "555"})
    assert [list(clause)[0] for clause in filt["$or"]] == ["name", "email", "mobile"]


@pytest.mark.parametrize("value", ["all", "", "   "])
def test_all_or_blank_enum_means_no_filter(value):
    assert build_product_filter({"status": value, "category": value, "featured": value}) == {}
    assert build_user_filter({"role": value}) == {}


def test_enum_filters():
    category = "65a1b2c3d4e5f6a7b8c9d0e1"
    filt = build_product_filter({"status": "available", "category": category, "featured": "true"})
    assert filt["status"] == "available"
    assert str(filt["category"]) == category
    assert filt["featured"] is True
    assert build_product_filter({"featured": "false"})["featured"] is False
    assert build_user_filter({"role": "admin"}) == {"role": "admin"}


def test_price_bounds_are_inclusive_and_optional():
    assert build_product_filter({"minPrice": "5"}) == {"price": {"$gte": 5.0}}
    assert build_product_filter({"maxPrice": "20.5"}) == {"price": {"$lte": 20.5}}
    assert build_product_filter({"minPrice": "5", "maxPrice": "20"}) == {"price": {"$gte": 5.0, "$lte": 20.0}}
    assert build_product_filter({"minPrice": "cheap", "maxPrice": "nan"}) == {}


def test_date_range_covers_whole_end_day():
    filt = build_category_filter({"startDate": "2024-01-01", "endDate": "2024-01-31"})
    assert filt["createdAt"] == {
        "$gte": datetime(2024, 1, 1),
        "$lte": datetime(2024, 1, 31, 23, 59, 59, 999000),
    }


def test_date_with_time_and_zone_becomes_naive_utc():
    filt = build_user_filter({"startDate": "2024-03-01T10:00:00+02:00", "endDate": "not-a-date"})
    assert filt == {"createdAt": {"$gte": datetime(2024, 3, 1, 8, 0, 0)}}


def test_filter_is_idempotent_and_leaves_input_alone():
    query = {"search": "cheese", "status": "available", "minPrice": "3", "startDate": "2024-01-01"}
    snapshot = dict(query)
    assert build_product_filter(query) == build_product_filter(query)
    assert query == snapshot


# -------------------- Order filter --------------------

def _order(db, user, status="pending", amount=10.0, **extra):
    doc = {"user": user["_id"], "items": [], "totalAmount": amount, "status": status, "orderDate": utcnow(), **extra}
    return create_document(db, "order", doc)


def test_order_search_by_customer(db):
    jane = make_user(db)
    bob = make_user(db, name="Bob Stone", email="bob@example.com", mobile="5559876543")
    _order(db, jane)
    _order(db, jane)
    _order(db, bob)

    filt = build_order_filter(db, {"search": "JANE"})
    assert db["order"].count_documents(filt) == 2
    filt = build_order_filter(db, {"search": "98765"})
    assert db["order"].count_documents(filt) == 1


def test_order_search_by_id(db):
    jane = make_user(db)
    order_id = _order(db, jane)
    _order(db, jane)
    filt = build_order_filter(db, {"search": order_id})
    assert [str(o["_id"]) for o in db["order"].find(filt)] == [order_id]


def test_order_search_without_matches_is_empty_not_error(db):
    _order(db, make_user(db))
    filt = build_order_filter(db, {"search": "nobody"})
    assert db["order"].count_documents(filt) == 0


def test_order_status_and_date_filters(db):
    jane = make_user(db)
    _order(db, jane, status="delivered", orderDate=datetime(2024, 5, 2, 12))
    _order(db, jane, status="delivered", orderDate=datetime(2024, 6, 1))
    _order(db, jane, status="pending", orderDate=datetime(2024, 5, 3))
    filt = build_order_filter(db, {"status": "delivered", "startDate": "2024-05-01", "endDate": "2024-05-31"})
    assert db["order"].count_documents(filt) == 1
    assert build_order_filter(db, {"status": "all"}) == {}


# -------------------- Paginator --------------------

@pytest.fixture
def menu(db):
    pizza = make_category(db)
    for i in range(25):
        make_product(db, pizza, name=f"Pizza {i:02d}", price=float(i))
    return pizza


@pytest.mark.parametrize("limit", [1, 3, 7, 10, 25, 100])
@pytest.mark.parametrize("page", [1, 2, 5])
def test_page_never_exceeds_limit(db, menu, page, limit):
    params = ListParams(page=page, limit=limit, sort="price", order="asc")
    result = paginate(db["product"], {}, params, SortSpec("price", ASCENDING))
    assert len(result["data"]) <= limit
    assert result["pagination"]["totalPages"] == math.ceil(25 / limit)
    assert result["count"] == 25


def test_last_page(db, menu):
    result = paginate(db["product"], {}, ListParams(3, 10, "price", "asc"), SortSpec("price", ASCENDING))
    assert [p["price"] for p in result["data"]] == [20.0, 21.0, 22.0, 23.0, 24.0]
    assert result["pagination"] == {
        "total": 25,
        "page": 3,
        "limit": 10,
        "totalPages": 3,
        "hasNextPage": False,
        "hasPrevPage": True,
    }


def test_page_past_the_end_is_empty(db, menu):
    result = paginate(db["product"], {}, ListParams(9, 10, "price", "asc"), SortSpec("price", DESCENDING))
    assert result["data"] == []
    assert result["pagination"]["hasNextPage"] is False


def test_pagination_applies_filter(db, menu):
    filt = build_product_filter({"minPrice": "10", "maxPrice": "14"})
    result = paginate(db["product"], filt, ListParams(1, 2, "price", "desc"), SortSpec("price", DESCENDING))
    assert [p["price"] for p in result["data"]] == [14.0, 13.0]
    assert result["pagination"]["totalPages"] == 3
    assert result["pagination"]["hasNextPage"] is True


def test_empty_collection_page():
    assert page_response([], 0, 1, 10)["pagination"] == {
        "total": 0,
        "page": 1,
        "limit": 10,
        "totalPages": 0,
        "hasNextPage": False,
        "hasPrevPage": False,
    }


# -------------------- Aggregates --------------------

def test_order_stats_exclude_cancelled_revenue(db):
    jane = make_user(db)
    _order(db, jane, "pending", 10)
    _order(db, jane, "pending", 20)
    _order(db, jane, "delivered", 20)
    _order(db, jane, "cancelled", 40)

    stats = order_status_stats(db["order"], {})
    assert stats == {
        "pending": 2,
        "confirmed": 0,
        "delivered": 1,
        "cancelled": 1,
        "total": 4,
        "totalRevenue": 50,
    }


def test_order_stats_follow_the_filter(db):
    jane = make_user(db)
    _order(db, jane, "pending", 10)
    _order(db, jane, "pending", 20)
    _order(db, jane, "delivered", 20)
    stats = order_status_stats(db["order"], build_order_filter(db, {"status": "pending"}))
    assert stats["pending"] == 2
    assert stats["delivered"] == 0
    assert stats["totalRevenue"] == 30


def test_order_stats_with_no_rows(db):
    assert order_status_stats(db["order"], {"status": "delivered"}) == {
        "pending": 0,
        "confirmed": 0,
        "delivered": 0,
        "cancelled": 0,
        "total": 0,
        "totalRevenue": 0,
    }


def test_user_role_stats(db):
    make_user(db)
    make_user(db, name="Bob", email="bob@example.com")
    make_user(db, name="Root", email="root@example.com", role="admin")
    assert user_role_stats(db["user"], {}) == {"admin": 1, "customer": 2, "total": 3}
    assert user_role_stats(db["user"], build_user_filter({"search": "bob"})) == {"admin": 0, "customer": 1, "total": 1}


def test_product_counts_join_onto_categories(db):
    pizza = make_category(db)
    drinks = make_category(db, name="Drinks")
    make_product(db, pizza)
    make_product(db, pizza, name="Diavola")
    rows = with_product_counts(db["product"], [pizza, drinks])
    assert [(r["name"], r["productCount"]) for r in rows] == [("Pizza", 2), ("Drinks", 0)]
    assert with_product_counts(db["product"], []) == []


def test_recent_first_is_the_default(db):
    pizza = make_category(db)
    old = make_product(db, pizza, name="Old")
    db["product"].update_one({"_id": old["_id"]}, {"$set": {"createdAt": utcnow() - timedelta(days=1)}})
    make_product(db, pizza, name="New")
    params = normalize_list_params({})
    result = paginate(db["product"], {}, params, resolve_sort(params.sort, PRODUCT_SORT_FIELDS, params.order))
    assert [p["name"] for p in result["data"]] == ["New", "Old"]
