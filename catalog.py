import logging
import re
from typing import List, Optional, Tuple

from fastapi import UploadFile
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_documents, now, parse_object_id, serialize_doc
from errors import Conflict, NotFound, ValidationError
from schemas import Category, CategoryForm, Product, ProductForm, ProductUpdateForm
from uploads import MAX_FILES, DeleteOutcome, UploadResolver

logger = logging.getLogger(__name__)


# ----------------------- Products -----------------------
def _get_product_doc(db: Database, product_id: str) -> dict:
    product = db["product"].find_one({"_id": parse_object_id(product_id, "Product")})
    if not product:
        raise NotFound("Product not found")
    return product


def list_products(db: Database, category: Optional[str] = None, q: Optional[str] = None) -> List[dict]:
    filt = {}
    if category:
        filt["category"] = category
    if q:
        filt["name"] = {"$regex": re.escape(q), "$options": "i"}
    docs = get_documents(db, "product", filt, sort=[("created_at", DESCENDING)])
    return [serialize_doc(d) for d in docs]


def get_product(db: Database, product_id: str) -> dict:
    return serialize_doc(_get_product_doc(db, product_id))


def _check_image_count(images: List[UploadFile]) -> None:
    if len(images) > MAX_FILES:
        raise ValidationError(f"At most {MAX_FILES} images are allowed")


def create_product(db: Database, uploader: UploadResolver, form: ProductForm, images: List[UploadFile]) -> dict:
    images = [i for i in images or [] if i.filename]
    if not images:
        raise ValidationError("At least one image is required")
    _check_image_count(images)

    image_urls = uploader.store(images, "products")
    logger.info("Stored product images: %s", image_urls)
    product = Product(**form.model_dump(), images=image_urls)
    product_id = create_document(db, "product", product.model_dump(exclude_none=True))
    logger.info("Product saved: %s", product_id)
    return get_product(db, product_id)


def update_product(db: Database, uploader: UploadResolver, product_id: str,
                   form: ProductUpdateForm, images: Optional[List[UploadFile]] = None) -> dict:
    product = _get_product_doc(db, product_id)
    update = form.model_dump(exclude_none=True)
    images = [i for i in images or [] if i.filename]
    if images:
        _check_image_count(images)
        update["images"] = uploader.store(images, "products")
    update["updated_at"] = now()
    db["product"].update_one({"_id": product["_id"]}, {"$set": update})
    return get_product(db, product_id)


def delete_product(db: Database, uploader: UploadResolver, product_id: str) -> Tuple[dict, DeleteOutcome]:
    """Delete a product. Image cleanup is best-effort and reported, never raised."""
    product = _get_product_doc(db, product_id)
    outcome = uploader.destroy_many(product.get("images", []))
    if outcome.failures:
        logger.warning("Product %s deleted with %d image cleanup failures", product_id, len(outcome.failures))
    res = db["product"].delete_one({"_id": product["_id"]})
    if res.deleted_count == 0:
        raise NotFound("Product not found or already deleted")
    return serialize_doc(product), outcome


# ----------------------- Categories -----------------------
def slugify(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "-", name.lower())


def _get_category_doc(db: Database, category_id: str) -> dict:
    category = db["category"].find_one({"_id": parse_object_id(category_id, "Category")})
    if not category:
        raise NotFound("Category not found")
    return category


def _with_parent(db: Database, category: dict) -> dict:
    doc = serialize_doc(category)
    parent_id = category.get("parent")
    if parent_id:
        parent = db["category"].find_one({"_id": parse_object_id(parent_id, "Category")}, {"name": 1})
        doc["parent"] = {"id": str(parent["_id"]), "name": parent["name"]} if parent else None
    return doc


def _check_parent(db: Database, parent: Optional[str], own_id: Optional[str] = None) -> Optional[str]:
    if not parent:
        return None
    try:
        _get_category_doc(db, parent)
    except NotFound:
        raise ValidationError("Invalid parent category ID")
    if own_id and parent == own_id:
        raise ValidationError("A category cannot be its own parent")
    return parent


def _name_taken(db: Database, name: str, exclude=None) -> bool:
    filt = {"$or": [{"name": name}, {"slug": slugify(name)}]}
    if exclude is not None:
        filt["_id"] = {"$ne": exclude}
    return db["category"].find_one(filt) is not None


def list_categories(db: Database) -> List[dict]:
    return [_with_parent(db, c) for c in db["category"].find().sort("name", ASCENDING)]


def get_category(db: Database, category_id: str) -> dict:
    return _with_parent(db, _get_category_doc(db, category_id))


def create_category(db: Database, uploader: UploadResolver, form: CategoryForm,
                    image: Optional[UploadFile] = None) -> dict:
    name = (form.name or "").strip()
    if not name:
        raise ValidationError("Name is required")
    if _name_taken(db, name):
        raise Conflict("Category already exists")
    parent = _check_parent(db, form.parent)
    image_url = uploader.store([image], "categories", "image")[0] if image and image.filename else ""
    category = Category(
        name=name,
        slug=slugify(name),
        description=(form.description or "").strip() or None,
        image=image_url,
        parent=parent,
    )
    try:
        category_id = create_document(db, "category", category)
    except DuplicateKeyError:
        raise Conflict("Category already exists")
    return get_category(db, category_id)


def update_category(db: Database, uploader: UploadResolver, category_id: str, form: CategoryForm,
                    image: Optional[UploadFile] = None) -> dict:
    category = _get_category_doc(db, category_id)
    update = {}
    if form.name is not None:
        name = form.name.strip()
        if not name:
            raise ValidationError("Name cannot be empty")
        if _name_taken(db, name, exclude=category["_id"]):
            raise Conflict("Category already exists")
        update["name"] = name
        update["slug"] = slugify(name)
    if form.description is not None:
        update["description"] = form.description.strip()
    if form.parent is not None:
        update["parent"] = _check_parent(db, form.parent, own_id=str(category["_id"]))
    if image and image.filename:
        update["image"] = uploader.store([image], "categories", "image")[0]
    update["updated_at"] = now()
    try:
        db["category"].update_one({"_id": category["_id"]}, {"$set": update})
    except DuplicateKeyError:
        raise Conflict("Category already exists")
    return get_category(db, category_id)


def delete_category(db: Database, category_id: str) -> str:
    category = _get_category_doc(db, category_id)
    if db["category"].find_one({"parent": str(category["_id"])}):
        raise ValidationError("Cannot delete category with subcategories")
    db["category"].delete_one({"_id": category["_id"]})
    return "Category removed"
