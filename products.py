import re
from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from pymongo.errors import DuplicateKeyError

from cache import PRODUCTS_ALL_KEY, get_cache, invalidate_catalog, set_cache
from config import CACHE_TTL, DEFAULT_CURRENCY
from database import create_document, db, now
from errors import AppError
from helpers import parse_object_id, sanitize, serialize_doc
from reviews import delete_reviews_for_product
from schemas import Product as ProductSchema
from security import require_admin
from storage import delete_file, upload_image_file

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/admin/product", tags=["products"])

MAX_PRODUCT_IMAGES = 10
SORT_FIELDS = {"price": "price", "name": "name", "createdAt": "created_at", "rating": "rating"}


def normalize_name(name: Optional[str]) -> str:
    return (sanitize(name or "") or "").lower()


def parse_price(value: str) -> float:
    try:
        price = float(value)
    except (TypeError, ValueError):
        raise AppError("Price and quantity must be valid numbers", 400)
    if price < 0:
        raise AppError("Price cannot be negative", 400)
    return price


def parse_quantity(value: str) -> int:
    try:
        quantity = int(value)
    except (TypeError, ValueError):
        raise AppError("Price and quantity must be valid numbers", 400)
    if quantity < 0:
        raise AppError("Quantity cannot be negative", 400)
    return quantity


def product_rating(product: Dict[str, Any]) -> float:
    num_reviews = product.get("numReviews") or 0
    if not num_reviews:
        return 0
    return round((product.get("totalRating") or 0) / num_reviews, 1)


def serialize_products(products: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Products with their category name, stock flag and average rating."""
    category_ids = list({p["category"] for p in products if p.get("category")})
    categories = {
        c["_id"]: c for c in db["category"].find({"_id": {"$in": category_ids}}, {"name": 1})
    } if category_ids else {}
    out = []
    for product in products:
        data = serialize_doc(product)
        category = categories.get(product.get("category"))
        data["category"] = {"_id": str(category["_id"]), "name": category["name"]} if category else None
        data["categoryName"] = category["name"] if category else None
        data["inStock"] = (product.get("quantity") or 0) > 0
        data["rating"] = product_rating(product)
        out.append(data)
    return out


def get_product_or_404(product_id: str) -> Dict[str, Any]:
    product = db["product"].find_one({"_id": parse_object_id(product_id, "product ID")})
    if not product:
        raise AppError("Product not found", 404)
    return product


def find_category_by_name(name: str) -> Dict[str, Any]:
    category = db["category"].find_one({"name": sanitize(name)})
    if not category:
        raise AppError("Category not found", 404)
    return category


def product_files(product: Dict[str, Any]) -> List[str]:
    return [url for url in [product.get("thumbnail")] + list(product.get("images") or []) if url]


def delete_product_with_assets(product: Dict[str, Any]) -> None:
    """Remove a product, its reviews and its stored images."""
    reviews_removed = delete_reviews_for_product(product["_id"])
    db["product"].delete_one({"_id": product["_id"]})
    for url in product_files(product):
        delete_file(url)
    invalidate_catalog()
    logger.info("product_deleted", product_id=str(product["_id"]), reviews_removed=reviews_removed)


@router.post("/create", status_code=201)
def create_product(
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    quantity: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    cover_image: Optional[UploadFile] = File(None, alias="coverImage"),
    images: Optional[List[UploadFile]] = File(None),
    current_user: dict = Depends(require_admin),
):
    name = normalize_name(name)
    if not name or not price or not quantity or not category:
        raise AppError("Name, price, quantity and category are required", 400)
    if cover_image is None:
        raise AppError("Please upload a cover image", 400)
    images = images or []
    if len(images) > MAX_PRODUCT_IMAGES:
        raise AppError(f"You can upload at most {MAX_PRODUCT_IMAGES} images", 400)

    price_value, quantity_value = parse_price(price), parse_quantity(quantity)
    category_doc = find_category_by_name(category)
    if db["product"].find_one({"name": name}):
        raise AppError("Product already exists", 400)

    thumbnail = upload_image_file(cover_image)
    image_urls = [upload_image_file(image) for image in images]

    product = ProductSchema(
        name=name,
        description=sanitize(description),
        price=price_value,
        quantity=quantity_value,
        category=str(category_doc["_id"]),
        thumbnail=thumbnail,
        images=image_urls,
        currency=DEFAULT_CURRENCY,
    ).to_document()
    product["category"] = category_doc["_id"]
    try:
        product_id = create_document("product", product)
    except DuplicateKeyError:
        for url in [thumbnail] + image_urls:
            delete_file(url)
        raise AppError("Product already exists", 400)

    invalidate_catalog()
    logger.info("product_created", product_id=product_id, name=name)
    created = db["product"].find_one({"_id": ObjectId(product_id)})
    return {"status": "success", "message": "Product created successfully", "data": serialize_products([created])[0]}


@router.get("/all")
def list_products():
    cached = get_cache(PRODUCTS_ALL_KEY)
    if cached is not None:
        return {"status": "success", "message": "Products fetched successfully", "data": cached}

    products = serialize_products(list(db["product"].find().sort("created_at", -1)))
    set_cache(PRODUCTS_ALL_KEY, products, CACHE_TTL)
    return {"status": "success", "message": "Products fetched successfully", "data": products}


@router.get("/search")
def search_products(
    query: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    category: Optional[str] = None,
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
):
    if sort_by not in SORT_FIELDS:
        raise AppError("Invalid sort field", 400)
    if sort_order not in ("asc", "desc"):
        raise AppError("Invalid sort order", 400)
    if min_price is not None and max_price is not None and min_price > max_price:
        raise AppError("minPrice cannot be greater than maxPrice", 400)

    filter_dict: Dict[str, Any] = {}
    term = sanitize(query) if query else None
    if term:
        pattern = {"$regex": re.escape(term), "$options": "i"}
        filter_dict["$or"] = [{"name": pattern}, {"description": pattern}]
    if min_price is not None or max_price is not None:
        filter_dict["price"] = {}
        if min_price is not None:
            filter_dict["price"]["$gte"] = min_price
        if max_price is not None:
            filter_dict["price"]["$lte"] = max_price
    if category:
        category_doc = db["category"].find_one({"name": sanitize(category)})
        if not category_doc:
            return {"status": "success", "message": "Products fetched successfully", "data": []}
        filter_dict["category"] = category_doc["_id"]

    direction = 1 if sort_order == "asc" else -1
    cursor = db["product"].find(filter_dict)
    if sort_by != "rating":
        cursor = cursor.sort(SORT_FIELDS[sort_by], direction)
    products = serialize_products(list(cursor))
    if sort_by == "rating":
        # derived field
        products.sort(key=lambda p: p["rating"], reverse=direction == -1)
    return {"status": "success", "message": "Products fetched successfully", "data": products}


@router.get("/category/{category_id}")
def list_products_by_category(category_id: str):
    oid = parse_object_id(category_id, "category ID")
    products = serialize_products(list(db["product"].find({"category": oid}).sort("created_at", -1)))
    return {"status": "success", "message": "Products fetched successfully", "data": products}


@router.get("/{product_id}")
def get_product(product_id: str):
    product = get_product_or_404(product_id)
    return {"status": "success", "message": "Product fetched successfully", "data": serialize_products([product])[0]}


@router.put("/update/{product_id}")
def update_product(
    product_id: str,
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    quantity: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    cover_image: Optional[UploadFile] = File(None, alias="coverImage"),
    images: Optional[List[UploadFile]] = File(None),
    current_user: dict = Depends(require_admin),
):
    product = get_product_or_404(product_id)
    update: Dict[str, Any] = {}

    if name is not None:
        new_name = normalize_name(name)
        if not new_name:
            raise AppError("Product name cannot be empty", 400)
        if db["product"].find_one({"name": new_name, "_id": {"$ne": product["_id"]}}):
            raise AppError("Product already exists", 400)
        update["name"] = new_name
    if description is not None:
        update["description"] = sanitize(description)
    if price is not None:
        update["price"] = parse_price(price)
    if quantity is not None:
        update["quantity"] = parse_quantity(quantity)
    if category is not None:
        update["category"] = find_category_by_name(category)["_id"]
    if images and len(images) > MAX_PRODUCT_IMAGES:
        raise AppError(f"You can upload at most {MAX_PRODUCT_IMAGES} images", 400)

    replaced: List[str] = []
    if cover_image is not None:
        update["thumbnail"] = upload_image_file(cover_image)
        replaced.append(product.get("thumbnail"))
    if images:
        update["images"] = [upload_image_file(image) for image in images]
        replaced.extend(product.get("images") or [])
    if not update:
        raise AppError("No update data provided", 400)

    update["updated_at"] = now()
    db["product"].update_one({"_id": product["_id"]}, {"$set": update})
    for url in replaced:
        delete_file(url)

    invalidate_catalog()
    logger.info("product_updated", product_id=product_id, fields=sorted(update))
    updated = db["product"].find_one({"_id": product["_id"]})
    return {"status": "success", "message": "Product updated successfully", "data": serialize_products([updated])[0]}


@router.delete("/delete/{product_id}")
def delete_product(product_id: str, current_user: dict = Depends(require_admin)):
    product = get_product_or_404(product_id)
    if product.get("inPromotion"):
        db["product"].update_one({"_id": product["_id"]}, {"$set": {"deleteAt": now(), "updated_at": now()}})
        invalidate_catalog()
        logger.info("product_delete_deferred", product_id=product_id, promo_id=str(product.get("promoId")))
        return {
            "status": "success",
            "message": "Product is in a promotion and will be deleted when the promotion ends",
            "data": {"id": product_id},
        }

    delete_product_with_assets(product)
    return {"status": "success", "message": "Product deleted successfully", "data": {"id": product_id}}
