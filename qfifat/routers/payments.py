from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..payments import add_proof
from ..schemas import PaymentProofOut, ProofIn
from ..security import CurrentUser, require_user

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/{payment_id}/proofs", response_model=PaymentProofOut)
def attach_proof(
    payment_id: int,
    payload: ProofIn,
    user: CurrentUser = Depends(require_user),
    db: Session = Depends(get_db),
):
    return add_proof(db, payment_id, user, payload.file_url, payload.file_name)
