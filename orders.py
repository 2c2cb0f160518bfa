"""
Order processing.

Creating an order decrements product stock item by item before the order is
persisted. Each stock write is independent and best-effort: a failing item is
recorded in ``OrderPlacement.stock_failures`` and logged, and the order is
still created. Nothing is rolled back.
"""
import logging
import math
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from pymongo import DESCENDING
from pymongo.database import Database

from database import create_document, now, parse_object_id, serialize_doc
from errors import Forbidden, InvalidStatus, NotFound, ValidationError
from schemas import ORDER_STATUSES, PAYMENT_METHODS, SHIPPING_FIELDS, Order, OrderCreateBody, OrderItem, PaymentResult

logger = logging.getLogger(__name__)

USER_FIELDS = {"name": 1, "email": 1}
PRODUCT_FIELDS = {"name": 1, "price": 1, "images": 1}


@dataclass
class StockFailure:
    product: str
    quantity: int
    reason: str


@dataclass
class OrderPlacement:
    order: dict
    stock_failures: List[StockFailure] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.stock_failures)


# Called once per failed stock update; hook for reconciliation/audit.
StockFailureHook = Callable[[StockFailure], None]


# ----------------------- Validation -----------------------
def validate_order_request(body: OrderCreateBody) -> None:
    if not body.items:
        raise ValidationError("Items are required and must be an array")
    if body.shipping_address is None:
        raise ValidationError("Shipping address is required")
    address = body.shipping_address.model_dump()
    missing = [f for f in SHIPPING_FIELDS if not (address.get(f) or "").strip()]
    if missing:
        raise ValidationError(f"Missing required shipping address fields: {', '.join(missing)}")
    if not body.payment_method:
        raise ValidationError("Payment method is required")
    if body.payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method. Must be one of: {', '.join(PAYMENT_METHODS)}")


def order_total(body: OrderCreateBody) -> float:
    # Prices come from the client and are not re-checked against the catalog.
    if body.total_amount is not None:
        return float(body.total_amount)
    return sum(item.price * item.quantity for item in body.items)


# ----------------------- Stock -----------------------
def decrement_stock(db: Database, item: OrderItem) -> None:
    product = db["product"].find_one({"_id": parse_object_id(item.product, "Product")}, {"stock": 1})
    if not product:
        raise NotFound("Product not found")
    # Read-modify-write; concurrent orders for one product race on this value.
    new_stock = max(0, int(product.get("stock", 0)) - item.quantity)
    db["product"].update_one({"_id": product["_id"]}, {"$set": {"stock": new_stock, "updated_at": now()}})
    logger.info("Updated stock for product %s: new stock = %d", item.product, new_stock)


def apply_stock_updates(db: Database, items: List[OrderItem],
                        on_failure: Optional[StockFailureHook] = None) -> List[StockFailure]:
    failures = []
    for item in items:
        if not item.product:
            continue
        try:
            decrement_stock(db, item)
        except Exception as exc:
            logger.warning("Error updating stock for product %s: %s", item.product, exc)
            failure = StockFailure(product=item.product, quantity=item.quantity, reason=str(exc))
            failures.append(failure)
            if on_failure:
                _notify(on_failure, failure)
    return failures


def _notify(hook: StockFailureHook, failure: StockFailure) -> None:
    # A broken audit hook must not abort the order.
    try:
        hook(failure)
    except Exception as exc:
        logger.warning("Stock failure hook raised for product %s: %s", failure.product, exc)


# ----------------------- Reads -----------------------
def _populate(db: Database, order: dict, with_user: bool = True, with_products: bool = False) -> dict:
    doc = serialize_doc(order)
    if with_user:
        user = None
        try:
            user = db["user"].find_one({"_id": parse_object_id(order["user"], "User")}, USER_FIELDS)
        except NotFound:
            pass
        doc["user"] = {"id": str(user["_id"]), "name": user.get("name"), "email": user.get("email")} if user else None
    if with_products:
        for item in doc.get("items", []):
            if not item.get("product"):
                continue
            try:
                product = db["product"].find_one({"_id": parse_object_id(item["product"], "Product")}, PRODUCT_FIELDS)
            except NotFound:
                product = None
            if product:
                item["product"] = serialize_doc(product)
    return doc


def _get_order_doc(db: Database, order_id: str) -> dict:
    order = db["order"].find_one({"_id": parse_object_id(order_id, "Order")})
    if not order:
        raise NotFound("Order not found")
    return order


def _is_owner_or_admin(order: dict, user: dict) -> bool:
    return str(order.get("user")) == str(user["id"]) or user.get("role") == "admin"


def list_orders(db: Database, status: Optional[str] = None, page: int = 1, limit: int = 10) -> dict:
    page, limit = max(1, page), max(1, limit)
    query = {"status": status} if status else {}
    cursor = db["order"].find(query).sort("created_at", DESCENDING).skip((page - 1) * limit).limit(limit)
    orders = [_populate(db, o, with_products=True) for o in cursor]
    count = db["order"].count_documents(query)
    return {"orders": orders, "total_pages": math.ceil(count / limit), "current_page": page}


def list_all_orders(db: Database) -> List[dict]:
    return [_populate(db, o) for o in db["order"].find().sort("created_at", DESCENDING)]


def list_user_orders(db: Database, user_id: str) -> List[dict]:
    cursor = db["order"].find({"user": str(user_id)}).sort("created_at", DESCENDING)
    return [_populate(db, o, with_user=False, with_products=True) for o in cursor]


def fetch_order(db: Database, order_id: str) -> dict:
    return _populate(db, _get_order_doc(db, order_id), with_products=True)


def get_order(db: Database, order_id: str, user: dict) -> dict:
    order = _get_order_doc(db, order_id)
    if not _is_owner_or_admin(order, user):
        raise Forbidden("Not authorized")
    return _populate(db, order, with_products=True)


# ----------------------- Writes -----------------------
def create_order(db: Database, user: dict, body: OrderCreateBody,
                 on_stock_failure: Optional[StockFailureHook] = None) -> OrderPlacement:
    validate_order_request(body)
    total = order_total(body)
    failures = apply_stock_updates(db, body.items, on_stock_failure)

    order = Order(
        user=str(user["id"]),
        items=body.items,
        shipping_address=body.shipping_address,
        payment_method=body.payment_method,
        total_amount=total,
        tax_amount=body.tax_amount,
        shipping_amount=body.shipping_amount,
    )
    order_id = create_document(db, "order", order)
    logger.info("Order created successfully: %s", order_id)
    if failures:
        logger.warning("Order %s created with %d failed stock updates", order_id, len(failures))
    return OrderPlacement(order=_populate(db, _get_order_doc(db, order_id)), stock_failures=failures)


def update_status(db: Database, order_id: str, status: str) -> dict:
    if status not in ORDER_STATUSES:
        raise InvalidStatus()
    order = _get_order_doc(db, order_id)
    update = {"status": status, "updated_at": now()}
    if status == "delivered":
        update["is_delivered"] = True
        update["delivered_at"] = now()
    db["order"].update_one({"_id": order["_id"]}, {"$set": update})
    return _populate(db, _get_order_doc(db, order_id))


def record_payment(db: Database, order_id: str, user: dict, payment_result: PaymentResult) -> dict:
    order = _get_order_doc(db, order_id)
    if not _is_owner_or_admin(order, user):
        raise Forbidden("Not authorized")
    stamp = now()
    db["order"].update_one(
        {"_id": order["_id"]},
        {"$set": {
            "is_paid": True,
            "paid_at": stamp,
            "payment_result": payment_result.model_dump(),
            "updated_at": stamp,
        }},
    )
    return _populate(db, _get_order_doc(db, order_id))


def sales_stats(db: Database) -> dict:
    totals = list(db["order"].aggregate([{"$group": {"_id": None, "sales": {"$sum": "$total_amount"}}}]))
    return {
        "total_users": db["user"].count_documents({}),
        "total_products": db["product"].count_documents({}),
        "total_orders": db["order"].count_documents({}),
        "total_sales": float(totals[0]["sales"]) if totals else 0.0,
    }
