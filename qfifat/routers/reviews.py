from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..reviews import approved_reviews, rating_summary, submit_review, user_review
from ..schemas import ProductReviewsOut, ReviewIn, ReviewOut
from ..security import CurrentUser, require_user

router = APIRouter(prefix="/products/{product_id}/reviews", tags=["reviews"])


@router.get("", response_model=ProductReviewsOut)
def product_reviews(product_id: int, db: Session = Depends(get_db)):
    average, count = rating_summary(db, product_id)
    return ProductReviewsOut(
        average_rating=float(average),
        count=count,
        reviews=approved_reviews(db, product_id),
    )


@router.get("/mine", response_model=ReviewOut)
def my_review(product_id: int, user: CurrentUser = Depends(require_user), db: Session = Depends(get_db)):
    review = user_review(db, user, product_id)
    if not review:
        raise HTTPException(status_code=404, detail="No review")
    return review


@router.put("", response_model=ReviewOut)
def write_review(
    product_id: int,
    payload: ReviewIn,
    user: CurrentUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    return submit_review(db, user, product_id, payload.rating, payload.comment)
