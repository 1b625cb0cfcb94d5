from typing import Optional

import structlog
from bson import ObjectId
from fastapi import APIRouter, Depends, File, Form, UploadFile
from pymongo.errors import DuplicateKeyError

from cache import CATEGORIES_ALL_KEY, get_cache, invalidate_catalog, set_cache
from config import CACHE_TTL
from database import create_document, db, get_documents, now
from errors import AppError
from helpers import parse_object_id, sanitize, serialize_doc, serialize_docs
from schemas import Category as CategorySchema
from security import require_admin
from storage import delete_file, upload_image_file

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/admin/category", tags=["categories"])


def get_category_or_404(category_id: str) -> dict:
    category = db["category"].find_one({"_id": parse_object_id(category_id, "category ID")})
    if not category:
        raise AppError("Category not found", 404)
    return category


@router.post("/create", status_code=201)
def create_category(
    name: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    current_user: dict = Depends(require_admin),
):
    name = sanitize(name or "")
    if not name:
        raise AppError("Category name is required", 400)
    if image is None:
        raise AppError("Please upload an image", 400)
    if db["category"].find_one({"name": name}):
        raise AppError("Category already exists", 400)

    image_url = upload_image_file(image)
    category = CategorySchema(name=name, image=image_url, author=str(current_user["_id"])).to_document()
    category["author"] = current_user["_id"]
    try:
        category_id = create_document("category", category)
    except DuplicateKeyError:
        delete_file(image_url)
        raise AppError("Category already exists", 400)

    invalidate_catalog()
    logger.info("category_created", category_id=category_id, name=name)
    created = db["category"].find_one({"_id": ObjectId(category_id)})
    return {"status": "success", "message": "Category created successfully", "data": serialize_doc(created)}


@router.get("/all")
def list_categories():
    cached = get_cache(CATEGORIES_ALL_KEY)
    if cached is not None:
        return {"status": "success", "message": "Categories fetched successfully", "data": cached}

    categories = serialize_docs(get_documents("category", sort=[("name", 1)]))
    set_cache(CATEGORIES_ALL_KEY, categories, CACHE_TTL)
    return {"status": "success", "message": "Categories fetched successfully", "data": categories}


@router.get("/{category_id}")
def get_category(category_id: str):
    category = get_category_or_404(category_id)
    return {"status": "success", "message": "Category fetched successfully", "data": serialize_doc(category)}


@router.put("/update/{category_id}")
def update_category(
    category_id: str,
    name: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    current_user: dict = Depends(require_admin),
):
    category = get_category_or_404(category_id)
    update = {}
    if name is not None:
        name = sanitize(name)
        if not name:
            raise AppError("Category name cannot be empty", 400)
        if db["category"].find_one({"name": name, "_id": {"$ne": category["_id"]}}):
            raise AppError("Category already exists", 400)
        update["name"] = name
    if image is not None:
        update["image"] = upload_image_file(image)
    if not update:
        raise AppError("No update data provided", 400)

    update["updated_at"] = now()
    db["category"].update_one({"_id": category["_id"]}, {"$set": update})
    if "image" in update:
        delete_file(category.get("image"))

    invalidate_catalog()
    logger.info("category_updated", category_id=category_id, fields=sorted(update))
    updated = db["category"].find_one({"_id": category["_id"]})
    return {"status": "success", "message": "Category updated successfully", "data": serialize_doc(updated)}


@router.delete("/delete/{category_id}")
def delete_category(category_id: str, current_user: dict = Depends(require_admin)):
    category = get_category_or_404(category_id)
    if db["product"].find_one({"category": category["_id"]}, {"_id": 1}):
        raise AppError("Category has products, delete or move them first", 400)

    db["category"].delete_one({"_id": category["_id"]})
    delete_file(category.get("image"))
    invalidate_catalog()
    logger.info("category_deleted", category_id=category_id)
    return {"status": "success", "message": "Category deleted successfully", "data": {"id": category_id}}
