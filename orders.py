"""
Order placement and status changes.

Placement is all-or-nothing without needing a replica set: every item is
checked first, then stock is taken with a conditional ``$inc`` per product
(only succeeds while stock >= quantity), and anything already taken is put
back if a later item or the order insert fails.
"""

import logging
from typing import List, Tuple

from bson import ObjectId
from fastapi import HTTPException
from pymongo import ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database

from database import create_document, utcnow
from schemas import ORDER_STATUSES, OrderCreate
from utils import maybe_object_id, populate_orders, to_object_id

logger = logging.getLogger(__name__)


def get_order_or_404(database: Database, order_id: str) -> dict:
    order = database["order"].find_one({"_id": to_object_id(order_id)})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return populate_orders(database, [order])[0]


def _insufficient(product: dict) -> HTTPException:
    return HTTPException(status_code=400, detail=f"Insufficient stock for product: {product['name']}")


def _check_items(products: Collection, order: OrderCreate) -> dict:
    """Look up every product and check stock without touching anything."""
    found = {}
    for item in order.items:
        product_id = maybe_object_id(item.product)
        product = products.find_one({"_id": product_id}) if product_id else None
        if not product:
            raise HTTPException(status_code=404, detail=f"Product not found: {item.product}")
        if product.get("stock", 0) < item.quantity:
            logger.warning(f"Order rejected: {product['name']} has {product.get('stock', 0)} left, {item.quantity} requested")
            raise _insufficient(product)
        found[product_id] = product
    return found


def _release(products: Collection, taken: List[Tuple[ObjectId, int]]) -> None:
    for product_id, quantity in reversed(taken):
        products.update_one({"_id": product_id}, {"$inc": {"stock": quantity}, "$set": {"updatedAt": utcnow()}})
        logger.warning(f"Restored {quantity} units of stock to product {product_id}")


def place_order(database: Database, order: OrderCreate) -> dict:
    if not order.user or not order.items:
        raise HTTPException(status_code=400, detail="User and items are required")
    user_id = maybe_object_id(order.user)
    if user_id is None or not database["user"].find_one({"_id": user_id}, {"_id": 1}):
        raise HTTPException(status_code=404, detail="User not found")

    products = database["product"]
    found = _check_items(products, order)

    taken: List[Tuple[ObjectId, int]] = []
    items = []
    total = 0.0
    try:
        for item in order.items:
            product_id = maybe_object_id(item.product)
            before = products.find_one_and_update(
                {"_id": product_id, "stock": {"$gte": item.quantity}},
                {"$inc": {"stock": -item.quantity}, "$set": {"updatedAt": utcnow()}},
                return_document=ReturnDocument.BEFORE,
            )
            if before is None:
                # another order got there first, or the same product is listed twice
                raise _insufficient(found[product_id])
            taken.append((product_id, item.quantity))
            price = float(before["price"])
            items.append({"product": product_id, "quantity": item.quantity, "price": price})
            total += price * item.quantity

        order_id = create_document(
            database,
            "order",
            {
                "user": user_id,
                "items": items,
                "totalAmount": round(total, 2),
                "status": "pending",
                "orderDate": utcnow(),
            },
        )
    except Exception:
        _release(products, taken)
        raise

    logger.info(f"Order {order_id} placed for user {user_id}: {len(items)} item(s), total {round(total, 2)}")
    return get_order_or_404(database, order_id)


def update_order_status(database: Database, order_id: str, status: str) -> dict:
    """Overwrite the status; any status may follow any other."""
    if status not in ORDER_STATUSES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid status. Valid values: {', '.join(ORDER_STATUSES)}",
        )
    result = database["order"].update_one(
        {"_id": to_object_id(order_id)},
        {"$set": {"status": status, "updatedAt": utcnow()}},
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="Order not found")
    logger.info(f"Order {order_id} status set to {status}")
    return get_order_or_404(database, order_id)
