import re
from typing import Any, Dict, List

import structlog
from bson import ObjectId
from fastapi import APIRouter, Depends
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from cache import STAGED_ORDER_PREFIX, delete_cache, get_cache, invalidate_catalog, set_cache
from config import ADMIN_PHONE, BRAND_INFO, STAGED_ORDER_TTL
from database import create_document, db, get_documents, now
from errors import AppError
from helpers import build_whatsapp_message, generate_reference, parse_object_id, sanitize, serialize_doc
from jobs import enqueue_receipt
from schemas import Order as OrderSchema, OrderInput
from security import get_current_user, require_admin
from storage import delete_file

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/admin/orders", tags=["orders"])
user_router = APIRouter(prefix="/api/user", tags=["orders"])


def order_data_from_input(payload: OrderInput, reference: str) -> Dict[str, Any]:
    """Sanitized order fields, camelCase, ready for Redis or Mongo."""
    products = []
    for item in payload.products:
        products.append({
            "product": str(parse_object_id(sanitize(item.product), "product ID")),
            "description": sanitize(item.description),
            "price": item.price,
            "quantity": item.quantity,
            "thumbnail": item.thumbnail,
            "currency": sanitize(item.currency or payload.currency),
        })
    data = {
        "clientName": sanitize(payload.client_name),
        "products": products,
        "totalAmount": payload.total_amount,
        "currency": sanitize(payload.currency),
        "reference": reference,
    }
    if payload.client_id:
        data["clientId"] = str(parse_object_id(sanitize(payload.client_id), "client ID"))
    if not data["clientName"]:
        raise AppError("Invalid order data", 400)
    return data


def to_order_document(data: Dict[str, Any]) -> Dict[str, Any]:
    order = OrderSchema(**data).to_document()
    for item in order["products"]:
        item["product"] = ObjectId(item["product"])
    if order.get("clientId"):
        order["clientId"] = ObjectId(order["clientId"])
    return order


def get_order_or_404(reference: str) -> Dict[str, Any]:
    order = db["order"].find_one({"reference": sanitize(reference)})
    if not order:
        raise AppError("Order not found", 404)
    return order


def checkout_url(order_data: Dict[str, Any]) -> str:
    phone = re.sub(r"\D", "", ADMIN_PHONE or "")
    message = build_whatsapp_message(
        order_data["clientName"],
        order_data["products"],
        order_data["totalAmount"],
        order_data["reference"],
        order_data["currency"],
    )
    return f"https://wa.me/{phone}?text={message}"


def reserve_stock(items: List[Dict[str, Any]]) -> None:
    """Take each item's quantity out of stock; all or nothing."""
    taken = []
    for item in items:
        result = db["product"].update_one(
            {"_id": item["product"], "quantity": {"$gte": item["quantity"]}},
            {"$inc": {"quantity": -item["quantity"]}, "$set": {"updated_at": now()}},
        )
        if result.modified_count == 0:
            for product_id, quantity in taken:
                db["product"].update_one({"_id": product_id}, {"$inc": {"quantity": quantity}})
            if not db["product"].find_one({"_id": item["product"]}, {"_id": 1}):
                raise AppError(f"Product not found: {item.get('description')}", 404)
            raise AppError(f"Insufficient stock for {item.get('description')}", 400)
        taken.append((item["product"], item["quantity"]))


@router.post("/stage")
def stage_order(payload: OrderInput):
    reference = generate_reference()
    order_data = order_data_from_input(payload, reference)
    set_cache(STAGED_ORDER_PREFIX + reference, order_data, STAGED_ORDER_TTL)
    logger.info("order_staged", reference=reference, items=len(order_data["products"]))
    return {
        "status": "success",
        "message": "Order staged successfully",
        "checkoutUrl": checkout_url(order_data),
        "data": {"reference": reference},
    }


@router.get("/retrieve/{reference}")
def retrieve_staged_order(reference: str, current_user: dict = Depends(require_admin)):
    order = get_cache(STAGED_ORDER_PREFIX + sanitize(reference))
    if not order:
        raise AppError("Order not found in cache", 404)
    return {"status": "success", "message": "Order retrieved successfully", "data": order}


@router.post("/{reference}", status_code=201)
def create_order(reference: str, payload: OrderInput, current_user: dict = Depends(require_admin)):
    reference = sanitize(reference)
    if not reference:
        raise AppError("No reference provided", 400)
    if db["order"].find_one({"reference": reference}, {"_id": 1}):
        raise AppError("Order with this reference already exists", 400)

    order = to_order_document(order_data_from_input(payload, reference))
    try:
        order_id = create_document("order", order)
    except DuplicateKeyError:
        raise AppError("Order with this reference already exists", 400)

    delete_cache(STAGED_ORDER_PREFIX + reference)
    logger.info("order_created", order_id=order_id, reference=reference)
    created = db["order"].find_one({"_id": ObjectId(order_id)})
    return {"status": "success", "message": "Order created successfully", "data": serialize_doc(created)}


@router.get("")
def list_orders(current_user: dict = Depends(require_admin)):
    orders = [serialize_doc(o) for o in get_documents("order", sort=[("created_at", -1)])]
    return {"status": "success", "message": "Orders retrieved successfully", "data": orders}


@router.get("/{reference}")
def get_order(reference: str, current_user: dict = Depends(require_admin)):
    order = get_order_or_404(reference)
    return {"status": "success", "message": "Order retrieved successfully", "data": serialize_doc(order)}


@router.put("/confirm/{reference}")
def confirm_payment(reference: str, current_user: dict = Depends(require_admin)):
    order = get_order_or_404(reference)
    paid_at = now()
    claimed = db["order"].find_one_and_update(
        {"_id": order["_id"], "status": "pending"},
        {"$set": {"status": "paid", "paidAt": paid_at, "updated_at": paid_at}},
        return_document=ReturnDocument.AFTER,
    )
    if claimed is None:
        raise AppError("Only pending orders can be confirmed", 400)

    try:
        reserve_stock(claimed.get("products", []))
    except AppError:
        db["order"].update_one(
            {"_id": order["_id"]},
            {"$set": {"status": "pending", "paidAt": None, "updated_at": now()}},
        )
        raise
    invalidate_catalog()

    confirmed = serialize_doc(claimed)
    enqueue_receipt(confirmed, BRAND_INFO)
    logger.info("order_paid", reference=order["reference"], total=order.get("totalAmount"))
    return {"status": "success", "message": "Payment confirmed successfully", "data": confirmed}


@router.put("/{reference}")
def update_order(reference: str, payload: OrderInput, current_user: dict = Depends(require_admin)):
    order = get_order_or_404(reference)
    if order.get("status") != "pending":
        raise AppError("Paid orders cannot be modified", 400)

    update = to_order_document(order_data_from_input(payload, order["reference"]))
    update = {k: update[k] for k in ("clientName", "clientId", "products", "totalAmount", "currency")}
    if not update["clientId"]:
        del update["clientId"]
    update["updated_at"] = now()
    db["order"].update_one({"_id": order["_id"]}, {"$set": update})

    logger.info("order_updated", reference=order["reference"])
    updated = db["order"].find_one({"_id": order["_id"]})
    return {"status": "success", "message": "Order updated successfully", "data": serialize_doc(updated)}


@router.delete("/{reference}")
def delete_order(reference: str, current_user: dict = Depends(require_admin)):
    order = get_order_or_404(reference)
    db["order"].delete_one({"_id": order["_id"]})
    for url in (order.get("receiptPdf"), order.get("receiptImage")):
        delete_file(url)
    logger.info("order_deleted", reference=order["reference"])
    return {"status": "success", "message": "Order deleted successfully", "data": {"reference": order["reference"]}}


@user_router.get("/orders")
def list_user_orders(current_user: dict = Depends(get_current_user)):
    orders = get_documents("order", {"clientId": current_user["_id"]}, sort=[("created_at", -1)])
    return {"status": "success", "message": "Orders retrieved successfully", "data": [serialize_doc(o) for o in orders]}
