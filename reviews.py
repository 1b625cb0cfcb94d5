from typing import Any, Dict, List

import structlog
from bson import ObjectId
from fastapi import APIRouter, Depends
from pymongo.errors import DuplicateKeyError

from cache import invalidate_catalog
from database import create_document, db, now
from errors import AppError
from helpers import parse_object_id, sanitize, serialize_doc
from schemas import Review as ReviewSchema, ReviewInput, ReviewUpdate
from security import get_current_user, require_admin

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/review", tags=["reviews"])


def recalculate_product_rating(product_id: ObjectId) -> None:
    ratings = [r.get("rating", 0) for r in db["review"].find({"product": product_id}, {"rating": 1})]
    db["product"].update_one(
        {"_id": product_id},
        {"$set": {"totalRating": sum(ratings), "numReviews": len(ratings), "updated_at": now()}},
    )
    invalidate_catalog()


def delete_reviews_for_product(product_id: ObjectId) -> int:
    return db["review"].delete_many({"product": product_id}).deleted_count


def delete_reviews_for_user(user_id: ObjectId) -> int:
    product_ids = {r["product"] for r in db["review"].find({"user": user_id}, {"product": 1})}
    deleted = db["review"].delete_many({"user": user_id}).deleted_count
    for product_id in product_ids:
        recalculate_product_rating(product_id)
    return deleted


def serialize_reviews(reviews: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Attach the reviewer's name, the way the product page lists them."""
    user_ids = list({r["user"] for r in reviews if r.get("user")})
    users = {
        u["_id"]: u for u in db["user"].find({"_id": {"$in": user_ids}}, {"firstname": 1, "lastname": 1})
    } if user_ids else {}
    out = []
    for review in reviews:
        data = serialize_doc(review)
        user = users.get(review.get("user"))
        if user:
            data["user"] = {"_id": str(user["_id"]), "firstname": user.get("firstname"),
                            "lastname": user.get("lastname")}
            data["reviewerName"] = f"{user.get('firstname')} {user.get('lastname')}"
        else:
            data["reviewerName"] = None
        out.append(data)
    return out


def get_review_or_404(review_id: str) -> Dict[str, Any]:
    review = db["review"].find_one({"_id": parse_object_id(review_id, "review ID")})
    if not review:
        raise AppError("Review not found", 404)
    return review


@router.get("/all")
def list_all_reviews(current_user: dict = Depends(require_admin)):
    reviews = list(db["review"].find().sort("created_at", -1))
    return {"status": "success", "message": "Reviews fetched successfully", "data": serialize_reviews(reviews)}


@router.get("/user")
def list_user_reviews(current_user: dict = Depends(get_current_user)):
    reviews = list(db["review"].find({"user": current_user["_id"]}).sort("created_at", -1))
    return {"status": "success", "message": "Reviews fetched successfully", "data": serialize_reviews(reviews)}


@router.get("/{product_id}")
def list_product_reviews(product_id: str):
    oid = parse_object_id(product_id, "product ID")
    reviews = list(db["review"].find({"product": oid}).sort("created_at", -1))
    return {"status": "success", "message": "Reviews fetched successfully", "data": serialize_reviews(reviews)}


@router.post("/{reference}", status_code=201)
def create_review(reference: str, payload: ReviewInput, current_user: dict = Depends(get_current_user)):
    if current_user.get("role") != "user":
        raise AppError("Only users can create reviews", 403)

    product_id = parse_object_id(payload.product, "product ID")
    if db["review"].find_one({"user": current_user["_id"], "product": product_id}):
        raise AppError("You have already reviewed this product", 403)

    order = db["order"].find_one({"reference": sanitize(reference)})
    if not order:
        raise AppError("Order not found", 404)
    purchased = any(str(item.get("product")) == str(product_id) for item in order.get("products", []))
    if not purchased or order.get("status") != "paid":
        raise AppError("You can only review products you have purchased", 403)

    product = db["product"].find_one({"_id": product_id})
    if not product:
        raise AppError("Product not found", 404)

    # Link the order to the reviewer's account
    db["order"].update_one(
        {"_id": order["_id"]}, {"$set": {"clientId": current_user["_id"], "updated_at": now()}}
    )

    review = ReviewSchema(
        product=str(product_id),
        user=str(current_user["_id"]),
        rating=payload.rating,
        comment=sanitize(payload.comment),
        reference=order["reference"],
    ).to_document()
    review["product"] = product_id
    review["user"] = current_user["_id"]
    try:
        review_id = create_document("review", review)
    except DuplicateKeyError:
        raise AppError("You have already reviewed this product", 403)

    recalculate_product_rating(product_id)
    logger.info("review_created", review_id=review_id, product_id=str(product_id), rating=payload.rating)

    created = db["review"].find_one({"_id": ObjectId(review_id)})
    return {"status": "success", "message": "Review created successfully", "data": serialize_reviews([created])[0]}


@router.put("/{review_id}")
def update_review(review_id: str, payload: ReviewUpdate, current_user: dict = Depends(get_current_user)):
    review = get_review_or_404(review_id)
    is_author = review.get("user") == current_user["_id"]
    is_admin = current_user.get("role") == "admin"

    update: Dict[str, Any] = {}
    if payload.rating is not None or payload.comment is not None:
        if not is_author:
            raise AppError("You can only edit your own review", 403)
        if payload.rating is not None:
            update["rating"] = payload.rating
        if payload.comment is not None:
            update["comment"] = sanitize(payload.comment)
    if payload.response is not None:
        if not is_admin:
            raise AppError("Only admins can respond to reviews", 403)
        update["response"] = {
            "comment": sanitize(payload.response),
            "responder": f"{current_user.get('firstname')} {current_user.get('lastname')}",
            "responderId": current_user["_id"],
            "createdAt": now(),
        }
    if not update:
        raise AppError("No update data provided", 400)

    update["updated_at"] = now()
    db["review"].update_one({"_id": review["_id"]}, {"$set": update})
    if "rating" in update:
        recalculate_product_rating(review["product"])

    updated = db["review"].find_one({"_id": review["_id"]})
    return {"status": "success", "message": "Review updated successfully", "data": serialize_reviews([updated])[0]}


@router.delete("/{review_id}")
def delete_review(review_id: str, current_user: dict = Depends(get_current_user)):
    review = get_review_or_404(review_id)
    if review.get("user") != current_user["_id"] and current_user.get("role") != "admin":
        raise AppError("You are not allowed to delete this review", 403)

    db["review"].delete_one({"_id": review["_id"]})
    recalculate_product_rating(review["product"])
    logger.info("review_deleted", review_id=review_id)
    return {"status": "success", "message": "Review deleted successfully", "data": {"id": review_id}}
