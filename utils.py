from datetime import datetime
from typing import Iterable, List, Optional

from bson import ObjectId
from fastapi import HTTPException
from pymongo.database import Database

USER_PUBLIC_FIELDS = {"name": 1, "email": 1, "mobile": 1}
PRODUCT_PUBLIC_FIELDS = {"name": 1, "price": 1, "imageUrl": 1}
CATEGORY_PUBLIC_FIELDS = {"name": 1, "description": 1}
USER_HIDDEN_FIELDS = {"password_hash": 0, "salt": 0}


def to_object_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid id format")


def maybe_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def _value_to_json(v):
    if isinstance(v, ObjectId):
        return str(v)
    if isinstance(v, datetime):
        return v.isoformat()
    if isinstance(v, dict):
        return doc_to_json(v)
    if isinstance(v, list):
        return [_value_to_json(x) for x in v]
    return v


def doc_to_json(doc: dict) -> dict:
    if not doc:
        return doc
    return {k: _value_to_json(v) for k, v in doc.items()}


def _lookup(database: Database, collection: str, ids: Iterable, projection: dict) -> dict:
    ids = list({i for i in ids if isinstance(i, ObjectId)})
    if not ids:
        return {}
    return {d["_id"]: d for d in database[collection].find({"_id": {"$in": ids}}, projection)}


# -------------------- Populate --------------------

def populate_products(database: Database, products: List[dict]) -> List[dict]:
    """Replace each product's category id with {_id, name, description}."""
    categories = _lookup(database, "category", (p.get("category") for p in products), CATEGORY_PUBLIC_FIELDS)
    out = []
    for p in products:
        p = dict(p)
        p["category"] = categories.get(p.get("category"), p.get("category"))
        out.append(p)
    return out


def populate_orders(database: Database, orders: List[dict]) -> List[dict]:
    """Resolve order.user and items[].product references in two round trips."""
    users = _lookup(database, "user", (o.get("user") for o in orders), USER_PUBLIC_FIELDS)
    product_ids = (item.get("product") for o in orders for item in o.get("items", []))
    products = _lookup(database, "product", product_ids, PRODUCT_PUBLIC_FIELDS)
    out = []
    for o in orders:
        o = dict(o)
        o["user"] = users.get(o.get("user"), o.get("user"))
        o["items"] = [
            {**item, "product": products.get(item.get("product"), item.get("product"))}
            for item in o.get("items", [])
        ]
        out.append(o)
    return out
