"""
Per-user product ratings.

Each user holds at most one entry in ``product.ratings``; ``average_rating``
is recomputed from the full list on every write and left unset while the list
is empty.
"""
import logging
from typing import List, Optional

from pymongo.database import Database

from database import now, parse_object_id
from errors import InvalidRating, NotFound

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5


def average(ratings: List[dict]) -> Optional[float]:
    if not ratings:
        return None
    return sum(r["rating"] for r in ratings) / len(ratings)


def validate_rating(rating) -> int:
    # bool is an int subclass; True must not count as a 1-star rating.
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise InvalidRating()
    if rating < MIN_RATING or rating > MAX_RATING:
        raise InvalidRating()
    return rating


def rate_product(db: Database, product_id: str, user_id: str, rating: int) -> dict:
    rating = validate_rating(rating)
    product = db["product"].find_one({"_id": parse_object_id(product_id, "Product")})
    if not product:
        raise NotFound("Product not found")

    ratings = list(product.get("ratings") or [])
    for entry in ratings:
        if entry["user"] == str(user_id):
            entry["rating"] = rating
            break
    else:
        ratings.append({"user": str(user_id), "rating": rating, "date": now()})

    # Read-modify-write: concurrent raters on one product race, last write wins.
    # A version field matched in the filter would turn this into compare-and-swap.
    avg = average(ratings)
    db["product"].update_one(
        {"_id": product["_id"]},
        {"$set": {"ratings": ratings, "average_rating": avg, "updated_at": now()}},
    )
    logger.info("User %s rated product %s: %d (average %.2f)", user_id, product_id, rating, avg)
    return {"message": "Rating saved successfully", "average_rating": avg}


def get_user_rating(db: Database, product_id: str, user_id: str) -> dict:
    product = db["product"].find_one({"_id": parse_object_id(product_id, "Product")}, {"ratings": 1})
    if not product:
        raise NotFound("Product not found")
    for entry in product.get("ratings") or []:
        if entry["user"] == str(user_id):
            return {"rating": entry["rating"]}
    raise NotFound("Rating not found")
