"""
Product reviews.

One review per customer per product; writing again replaces the earlier
one and sends it back to moderation. Only approved reviews are shown on
the product page or counted in its rating.
"""
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from fastapi import HTTPException
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .db import commit_or_500
from .models import Product, Review
from .security import CurrentUser

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5


def submit_review(
    db: Session,
    user: CurrentUser,
    product_id: int,
    rating: int,
    comment: Optional[str] = None,
) -> Review:
    if not MIN_RATING <= int(rating) <= MAX_RATING:
        raise HTTPException(status_code=400, detail=f"Rating must be between {MIN_RATING} and {MAX_RATING}")

    product = db.query(Product).filter(Product.id == product_id, Product.is_active == True).first()  # noqa: E712
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")

    comment = (comment or "").strip() or None
    review = (
        db.query(Review)
        .filter(Review.product_id == product_id, Review.user_id == user.id)
        .first()
    )
    if review is None:
        review = Review(product_id=product_id, user_id=user.id)
        db.add(review)
    review.rating = int(rating)
    review.comment = comment
    review.is_approved = False

    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("review save failed product=%s user=%s", product_id, user.id)
        raise HTTPException(status_code=500, detail="Failed to save review")

    db.refresh(review)
    logger.info("review %s saved product=%s rating=%s", review.id, product_id, review.rating)
    return review


def user_review(db: Session, user: CurrentUser, product_id: int) -> Optional[Review]:
    return (
        db.query(Review)
        .filter(Review.product_id == product_id, Review.user_id == user.id)
        .first()
    )


def approved_reviews(db: Session, product_id: int) -> list[Review]:
    return (
        db.query(Review)
        .filter(Review.product_id == product_id, Review.is_approved == True)  # noqa: E712
        .order_by(Review.created_at.desc(), Review.id.desc())
        .all()
    )


def rating_summary(db: Session, product_id: int) -> tuple[Decimal, int]:
    """(average rounded to one decimal, count) over approved reviews."""
    avg, count = (
        db.query(func.avg(Review.rating), func.count(Review.id))
        .filter(Review.product_id == product_id, Review.is_approved == True)  # noqa: E712
        .one()
    )
    if not count:
        return Decimal("0.0"), 0
    return Decimal(str(avg)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP), int(count)


def list_reviews(db: Session, approved: Optional[bool] = None) -> list[Review]:
    q = db.query(Review)
    if approved is not None:
        q = q.filter(Review.is_approved == approved)
    return q.order_by(Review.id.desc()).all()


def _get(db: Session, review_id: int) -> Review:
    review = db.query(Review).filter(Review.id == review_id).first()
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")
    return review


def moderate_review(db: Session, review_id: int, approved: bool, admin: CurrentUser) -> Review:
    review = _get(db, review_id)
    if review.is_approved == approved:
        return review
    review.is_approved = approved
    commit_or_500(db, "moderate review")
    db.refresh(review)
    logger.info("review %s approved=%s by %s", review.id, approved, admin.id)
    return review


def delete_review(db: Session, review_id: int, admin: CurrentUser) -> None:
    review = _get(db, review_id)
    db.delete(review)
    commit_or_500(db, "delete review")
    logger.info("review %s deleted by %s", review_id, admin.id)
