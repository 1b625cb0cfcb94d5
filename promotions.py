"""
Promotions and the stock they hold.

Creating a promotion reserves stock: each promo product's quantity drops by
the promo quantity and the product is tagged with the promotion. Releasing a
promotion (manual delete or the nightly expiry sweep) gives the stock back,
or deletes the products whose deletion was deferred while they were on
promotion.
"""
import html
import io
from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from fastapi import APIRouter, Depends
from PIL import Image, ImageDraw

from cache import invalidate_catalog
from database import as_utc, create_document, db, now
from errors import AppError
from helpers import TAG_RE, parse_object_id, sanitize, serialize_doc
from products import delete_product_with_assets
from receipts import load_font, wrap_text
from schemas import Promotion as PromotionSchema, PromotionInput, PromotionUpdate
from security import require_admin
from storage import delete_file, upload_image

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/admin/promotion", tags=["promotions"])

PROMOTION_TYPES = ["new stock", "discount promo", "buyOneGetOne"]
BANNER_SIZE = (1200, 400)
BANNER_BACKGROUND = (17, 24, 39)
BANNER_TEXT = (255, 255, 255)
BANNER_ACCENT = (250, 204, 21)


def render_banner(title: str, template: str) -> bytes:
    """Draw the promotion banner as JPEG: the title over the template's text."""
    text = " ".join(html.unescape(TAG_RE.sub(" ", template)).split())
    image = Image.new("RGB", BANNER_SIZE, BANNER_BACKGROUND)
    draw = ImageDraw.Draw(image)
    margin = 60
    width = BANNER_SIZE[0] - 2 * margin

    draw.rectangle([0, 0, 16, BANNER_SIZE[1]], fill=BANNER_ACCENT)
    y = margin
    title_font, body_font = load_font(64), load_font(32)
    for line in wrap_text(draw, title, title_font, width)[:2]:
        draw.text((margin, y), line, font=title_font, fill=BANNER_ACCENT)
        y += 76
    y += 12
    for line in wrap_text(draw, text, body_font, width):
        if y + 40 > BANNER_SIZE[1] - margin // 2:
            break
        draw.text((margin, y), line, font=body_font, fill=BANNER_TEXT)
        y += 42

    out = io.BytesIO()
    image.save(out, format="JPEG", quality=90)
    return out.getvalue()


def get_promotion_or_404(promotion_id: str) -> Dict[str, Any]:
    promotion = db["promotion"].find_one({"_id": parse_object_id(promotion_id, "promotion ID")})
    if not promotion:
        raise AppError("Promotion not found", 404)
    return promotion


def serialize_promotion(promotion: Dict[str, Any]) -> Dict[str, Any]:
    data = serialize_doc(promotion)
    product_ids = [p["product"] for p in promotion.get("products", [])]
    products = {
        p["_id"]: p for p in db["product"].find({"_id": {"$in": product_ids}}, {"name": 1, "thumbnail": 1})
    } if product_ids else {}
    for item in data.get("products", []):
        product = products.get(ObjectId(item["product"]))
        item["name"] = product.get("name") if product else None
        item["thumbnail"] = product.get("thumbnail") if product else None
    return data


def validate_promo_products(payload: PromotionInput) -> List[Dict[str, Any]]:
    seen = set()
    products = []
    for item in payload.products:
        product_id = parse_object_id(sanitize(item.product), "product ID")
        if product_id in seen:
            raise AppError("A product can only appear once in a promotion", 400)
        seen.add(product_id)
        if item.promo_price > item.main_price:
            raise AppError("Promo price cannot be greater than main price", 400)

        product = db["product"].find_one({"_id": product_id})
        if not product:
            raise AppError(f"Product not found: {product_id}", 404)
        if product.get("inPromotion"):
            raise AppError(f"Product {product['name']} is already in a promotion", 400)
        if (product.get("quantity") or 0) < item.quantity:
            raise AppError(f"Not enough stock for {product['name']}", 400)
        products.append({
            "product": product_id,
            "quantity": item.quantity,
            "mainPrice": item.main_price,
            "promoPrice": item.promo_price,
        })
    return products


def reserve_promo_stock(promotion: Dict[str, Any]) -> None:
    """Tag every promo product and take its promo quantity out of stock; all or nothing."""
    reserved = []
    for item in promotion["products"]:
        result = db["product"].update_one(
            {"_id": item["product"], "quantity": {"$gte": item["quantity"]}, "inPromotion": {"$ne": True}},
            {
                "$inc": {"quantity": -item["quantity"]},
                "$set": {
                    "promoId": promotion["_id"],
                    "promoTitle": promotion["title"],
                    "promotion": promotion["type"],
                    "inPromotion": True,
                    "updated_at": now(),
                },
            },
        )
        if result.modified_count == 0:
            for done in reserved:
                _restore_product(done["product"], done["quantity"])
            raise AppError("Stock changed while creating the promotion, please try again", 400)
        reserved.append(item)


def _restore_product(product_id: ObjectId, quantity: int) -> None:
    db["product"].update_one(
        {"_id": product_id},
        {
            "$inc": {"quantity": quantity},
            "$set": {
                "promoId": None,
                "promoTitle": None,
                "promotion": "none",
                "inPromotion": False,
                "updated_at": now(),
            },
        },
    )


def release_promotion(promotion: Dict[str, Any]) -> Dict[str, int]:
    """Give reserved stock back, or delete products whose deletion was deferred."""
    restored = deleted = 0
    for item in promotion.get("products", []):
        product = db["product"].find_one({"_id": item["product"]})
        if not product:
            continue
        if not product.get("inPromotion") or product.get("promoId") != promotion["_id"]:
            continue
        if product.get("deleteAt"):
            delete_product_with_assets(product)
            deleted += 1
        else:
            _restore_product(product["_id"], item["quantity"])
            restored += 1
    invalidate_catalog()
    logger.info("promotion_released", promotion_id=str(promotion["_id"]), restored=restored, deleted=deleted)
    return {"restored": restored, "deleted": deleted}


def remove_promotion(promotion: Dict[str, Any]) -> Dict[str, int]:
    released = release_promotion(promotion)
    db["promotion"].delete_one({"_id": promotion["_id"]})
    delete_file(promotion.get("promoBanner"))
    return released


def expire_promotions(at: Optional[Any] = None) -> int:
    """Remove every promotion whose end date has passed; returns how many."""
    cutoff = at or now()
    expired = list(db["promotion"].find({"endDate": {"$lte": cutoff}}))
    for promotion in expired:
        remove_promotion(promotion)
    if expired:
        logger.info("promotions_expired", count=len(expired))
    return len(expired)


@router.post("/", status_code=201)
def create_promotion(payload: PromotionInput, current_user: dict = Depends(require_admin)):
    title = sanitize(payload.title)
    if not title:
        raise AppError("Required fields are missing", 400)
    if payload.type not in PROMOTION_TYPES:
        raise AppError(f"Invalid promotion type. Valid types are: {', '.join(PROMOTION_TYPES)}", 400)
    start_date, end_date = as_utc(payload.start_date), as_utc(payload.end_date)
    if end_date <= start_date:
        raise AppError("End date must be after start date", 400)
    if end_date <= now():
        raise AppError("End date must be in the future", 400)

    products = validate_promo_products(payload)
    banner_url = upload_image(render_banner(title, payload.template), f"promo-{title}.jpg", "image/jpeg")

    promotion = PromotionSchema(
        title=title,
        type=payload.type,
        description=sanitize(payload.description) or "",
        start_date=start_date,
        end_date=end_date,
        discount_percentage=payload.discount_percentage,
        buy_one_get_one=payload.type == "buyOneGetOne",
        products=[{**p, "product": str(p["product"])} for p in products],
        promo_banner=banner_url,
        template=payload.template,
    ).to_document()
    promotion["products"] = products
    promotion_id = create_document("promotion", promotion)
    promotion["_id"] = ObjectId(promotion_id)

    try:
        reserve_promo_stock(promotion)
    except AppError:
        db["promotion"].delete_one({"_id": promotion["_id"]})
        delete_file(banner_url)
        raise

    invalidate_catalog()
    logger.info("promotion_created", promotion_id=promotion_id, type=payload.type, products=len(products))
    created = db["promotion"].find_one({"_id": promotion["_id"]})
    return {"status": "success", "message": "Promotion created successfully", "data": serialize_promotion(created)}


@router.get("/active")
def list_active_promotions():
    promotions = db["promotion"].find({"active": True, "endDate": {"$gt": now()}}).sort("endDate", 1)
    return {
        "status": "success",
        "message": "Promotions fetched successfully",
        "data": [serialize_promotion(p) for p in promotions],
    }


@router.get("/{promotion_id}")
def get_promotion(promotion_id: str):
    promotion = get_promotion_or_404(promotion_id)
    return {"status": "success", "message": "Promotion fetched successfully", "data": serialize_promotion(promotion)}


@router.put("/update/{promotion_id}")
def update_promotion(promotion_id: str, payload: PromotionUpdate, current_user: dict = Depends(require_admin)):
    promotion = get_promotion_or_404(promotion_id)
    update: Dict[str, Any] = {}
    if payload.title is not None:
        title = sanitize(payload.title)
        if not title:
            raise AppError("Title cannot be empty", 400)
        update["title"] = title
    if payload.description is not None:
        update["description"] = sanitize(payload.description)
    if payload.start_date is not None:
        update["startDate"] = as_utc(payload.start_date)
    if payload.end_date is not None:
        update["endDate"] = as_utc(payload.end_date)
    if payload.discount_percentage is not None:
        update["discountPercentage"] = payload.discount_percentage
    if not update:
        raise AppError("No update data provided", 400)

    start_date = update.get("startDate", promotion["startDate"])
    end_date = update.get("endDate", promotion["endDate"])
    if end_date <= start_date:
        raise AppError("End date must be after start date", 400)
    if "endDate" in update and end_date <= now():
        raise AppError("End date must be in the future", 400)

    update["updated_at"] = now()
    db["promotion"].update_one({"_id": promotion["_id"]}, {"$set": update})
    if "title" in update:
        db["product"].update_many({"promoId": promotion["_id"]}, {"$set": {"promoTitle": update["title"]}})
        invalidate_catalog()

    logger.info("promotion_updated", promotion_id=promotion_id, fields=sorted(update))
    updated = db["promotion"].find_one({"_id": promotion["_id"]})
    return {"status": "success", "message": "Promotion updated successfully", "data": serialize_promotion(updated)}


@router.delete("/{promotion_id}")
def delete_promotion(promotion_id: str, current_user: dict = Depends(require_admin)):
    promotion = get_promotion_or_404(promotion_id)
    released = remove_promotion(promotion)
    logger.info("promotion_deleted", promotion_id=promotion_id)
    return {"status": "success", "message": "Promotion deleted successfully", "data": {"id": promotion_id, **released}}
