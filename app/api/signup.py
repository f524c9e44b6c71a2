from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_publisher
from app.schemas.signup import SignupRequest, SignupResponse
from app.services import signup as signup_service
from app.services.events.channel import EventPublisher

router = APIRouter()


@router.post(
    "/signup",
    response_model=SignupResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["signup"],
)
def signup(
    payload: SignupRequest,
    db: Session = Depends(get_db),
    publisher: EventPublisher | None = Depends(get_publisher),
):
    result = signup_service.signup(db, payload, publisher)
    return SignupResponse(
        subscriber_id=result.subscriber.id,
        subscription_id=result.subscription.id,
        next_billing_date=result.subscription.next_billing_date,
        invoice_published=result.invoice_published,
    )
