from datetime import datetime
from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import ValidationError

from .config import get_settings
from .errors import (
    AlreadyProcessedError,
    BudgetExceededError,
    ConflictError,
    DuplicateMembershipError,
    InsufficientBalanceError,
    InvalidRequestError,
    LedgerServiceError,
    NotFoundError,
    UnauthorizedError,
    WrongTypeError,
)
from .models import (
    Actor,
    AmountOperator,
    CreateEventRequest,
    Event,
    LedgerHistoryResponse,
    MembershipRequest,
    RegisterUserRequest,
    SearchResult,
    SuspiciousRequest,
    Transaction,
    TransactionFilter,
    TransactionType,
    User,
    UserBalance,
)
from .service import LedgerService

settings = get_settings()

app = FastAPI(
    title="Points Ledger API",
    description="Loyalty points ledger: purchases, adjustments, transfers, redemptions and event rewards",
    version=settings.version,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ledger_service = LedgerService(settings=settings)

# Most specific first: the first matching class wins.
_ERROR_STATUS: list[tuple[type[LedgerServiceError], int]] = [
    (UnauthorizedError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (DuplicateMembershipError, status.HTTP_409_CONFLICT),
    (InsufficientBalanceError, status.HTTP_400_BAD_REQUEST),
    (BudgetExceededError, status.HTTP_400_BAD_REQUEST),
    (WrongTypeError, status.HTTP_400_BAD_REQUEST),
    (AlreadyProcessedError, status.HTTP_400_BAD_REQUEST),
    (InvalidRequestError, status.HTTP_400_BAD_REQUEST),
]


def status_for(error: LedgerServiceError) -> int:
    for error_type, code in _ERROR_STATUS:
        if isinstance(error, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


@app.exception_handler(LedgerServiceError)
async def ledger_error_handler(request: Request, exc: LedgerServiceError) -> JSONResponse:
    code = status_for(exc)
    logger.info("Request rejected", path=request.url.path, status=code, error=type(exc).__name__)
    return JSONResponse(status_code=code, content={"error": type(exc).__name__, "detail": str(exc)})


def get_service() -> LedgerService:
    return ledger_service


def get_actor(
    x_user_id: Optional[int] = Header(default=None),
    service: LedgerService = Depends(get_service),
) -> Actor:
    if x_user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    try:
        user = service.users.get_user(x_user_id)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")
    return Actor(user_id=user.id, role=user.role)


def get_filter(
    user_id: Optional[int] = None,
    type: Optional[TransactionType] = None,
    amount: Optional[int] = None,
    operator: AmountOperator = AmountOperator.GTE,
    related_id: Optional[str] = Query(default=None, alias="relatedId"),
    suspicious: Optional[bool] = None,
    processed: Optional[bool] = None,
    created_by: Optional[int] = Query(default=None, alias="createdBy"),
    created_after: Optional[datetime] = None,
    created_before: Optional[datetime] = None,
) -> TransactionFilter:
    try:
        return TransactionFilter(
            user_id=user_id, type=type, amount=amount, operator=operator,
            related_id=related_id, suspicious=suspicious, processed=processed,
            created_by=created_by, created_after=created_after, created_before=created_before,
        )
    except ValidationError as e:
        raise InvalidRequestError(f"Invalid filter: {e}") from e


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": settings.service_name}


@app.post("/transactions", response_model=Transaction, status_code=status.HTTP_201_CREATED, tags=["Transactions"])
def create_transaction(
    body: dict[str, Any] = Body(...),
    actor: Actor = Depends(get_actor),
    service: LedgerService = Depends(get_service),
) -> Transaction:
    payload = dict(body)
    transaction_type = payload.pop("type", None)
    if transaction_type is None:
        raise InvalidRequestError("Transaction type is required")
    return service.create_transaction(actor, transaction_type, payload)


@app.get("/transactions", response_model=SearchResult, tags=["Transactions"])
def search_transactions(
    criteria: TransactionFilter = Depends(get_filter),
    page: int = 1,
    limit: Optional[int] = None,
    actor: Actor = Depends(get_actor),
    service: LedgerService = Depends(get_service),
) -> SearchResult:
    return service.search_transactions(actor, criteria, page, limit)


@app.get("/transactions/pending-redemptions", response_model=SearchResult, tags=["Redemptions"])
def pending_redemptions(
    page: int = 1,
    limit: Optional[int] = None,
    actor: Actor = Depends(get_actor),
    service: LedgerService = Depends(get_service),
) -> SearchResult:
    return service.pending_redemptions(actor, page, limit)


@app.get("/transactions/lookup-redemption/{transaction_id}", response_model=Transaction, tags=["Redemptions"])
def lookup_redemption(
    transaction_id: int,
    actor: Actor = Depends(get_actor),
    service: LedgerService = Depends(get_service),
) -> Transaction:
    return service.lookup_redemption(actor, transaction_id)


@app.get("/transactions/{transaction_id}", response_model=Transaction, tags=["Transactions"])
def get_transaction(
    transaction_id: int,
    actor: Actor = Depends(get_actor),
    service: LedgerService = Depends(get_service),
) -> Transaction:
    return service.get_transaction(actor, transaction_id)


@app.patch("/transactions/{transaction_id}/suspicious", response_model=Transaction, tags=["Transactions"])
def set_suspicious(
    transaction_id: int,
    request: SuspiciousRequest,
    actor: Actor = Depends(get_actor),
    service: LedgerService = Depends(get_service),
) -> Transaction:
    return service.set_suspicious(actor, transaction_id, request.suspicious)


@app.patch("/transactions/{transaction_id}/processed", response_model=Transaction, tags=["Redemptions"])
def process_redemption(
    transaction_id: int,
    actor: Actor = Depends(get_actor),
    service: LedgerService = Depends(get_service),
) -> Transaction:
    return service.process_redemption(actor, transaction_id)


@app.post("/users", response_model=User, status_code=status.HTTP_201_CREATED, tags=["Users"])
def register_user(
    request: RegisterUserRequest,
    actor: Actor = Depends(get_actor),
    service: LedgerService = Depends(get_service),
) -> User:
    return service.users.register_user(actor, request)


@app.patch("/users/{user_id}/verify", response_model=User, tags=["Users"])
def verify_user(
    user_id: int,
    actor: Actor = Depends(get_actor),
    service: LedgerService = Depends(get_service),
) -> User:
    return service.users.verify_user(actor, user_id)


@app.patch("/users/{user_id}/suspicious", response_model=User, tags=["Users"])
def flag_cashier(
    user_id: int,
    request: SuspiciousRequest,
    actor: Actor = Depends(get_actor),
    service: LedgerService = Depends(get_service),
) -> User:
    return service.users.set_cashier_suspicious(actor, user_id, request.suspicious)


@app.get("/users/{user_id}/balance", response_model=UserBalance, tags=["Users"])
def get_user_balance(
    user_id: int,
    actor: Actor = Depends(get_actor),
    service: LedgerService = Depends(get_service),
) -> UserBalance:
    return service.get_balance_summary(actor, user_id)


@app.get("/users/{user_id}/ledger", response_model=LedgerHistoryResponse, tags=["Users"])
def get_user_ledger(
    user_id: int,
    limit: int = 50,
    offset: int = 0,
    actor: Actor = Depends(get_actor),
    service: LedgerService = Depends(get_service),
) -> LedgerHistoryResponse:
    return service.get_ledger_history(actor, user_id, limit, offset)


@app.post("/events", response_model=Event, status_code=status.HTTP_201_CREATED, tags=["Events"])
def create_event(
    request: CreateEventRequest,
    actor: Actor = Depends(get_actor),
    service: LedgerService = Depends(get_service),
) -> Event:
    return service.events.create_event(actor, request)


@app.get("/events/{event_id}", response_model=Event, tags=["Events"])
def get_event(
    event_id: int,
    actor: Actor = Depends(get_actor),
    service: LedgerService = Depends(get_service),
) -> Event:
    return service.events.view_event(actor, event_id)


@app.patch("/events/{event_id}/publish", response_model=Event, tags=["Events"])
def publish_event(
    event_id: int,
    actor: Actor = Depends(get_actor),
    service: LedgerService = Depends(get_service),
) -> Event:
    return service.events.publish(actor, event_id)


@app.post("/events/{event_id}/deactivate", response_model=Event, tags=["Events"])
def deactivate_event(
    event_id: int,
    actor: Actor = Depends(get_actor),
    service: LedgerService = Depends(get_service),
) -> Event:
    return service.events.deactivate(actor, event_id)


@app.delete("/events/{event_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["Events"])
def delete_event(
    event_id: int,
    actor: Actor = Depends(get_actor),
    service: LedgerService = Depends(get_service),
) -> None:
    service.events.delete_event(actor, event_id)


@app.post("/events/{event_id}/organizers", response_model=Event, status_code=status.HTTP_201_CREATED, tags=["Events"])
def add_organizer(
    event_id: int,
    request: MembershipRequest,
    actor: Actor = Depends(get_actor),
    service: LedgerService = Depends(get_service),
) -> Event:
    return service.events.add_organizer(actor, event_id, request.user_id)


@app.delete("/events/{event_id}/organizers/{user_id}", response_model=Event, tags=["Events"])
def remove_organizer(
    event_id: int,
    user_id: int,
    actor: Actor = Depends(get_actor),
    service: LedgerService = Depends(get_service),
) -> Event:
    return service.events.remove_organizer(actor, event_id, user_id)


@app.post("/events/{event_id}/guests/me", response_model=Event, status_code=status.HTTP_201_CREATED, tags=["Events"])
def rsvp(
    event_id: int,
    actor: Actor = Depends(get_actor),
    service: LedgerService = Depends(get_service),
) -> Event:
    return service.events.rsvp(actor, event_id)


@app.delete("/events/{event_id}/guests/me", response_model=Event, tags=["Events"])
def cancel_rsvp(
    event_id: int,
    actor: Actor = Depends(get_actor),
    service: LedgerService = Depends(get_service),
) -> Event:
    return service.events.cancel_rsvp(actor, event_id)


@app.post("/events/{event_id}/guests", response_model=Event, status_code=status.HTTP_201_CREATED, tags=["Events"])
def add_guest(
    event_id: int,
    request: MembershipRequest,
    actor: Actor = Depends(get_actor),
    service: LedgerService = Depends(get_service),
) -> Event:
    return service.events.add_guest(actor, event_id, request.user_id)


@app.delete("/events/{event_id}/guests/{user_id}", response_model=Event, tags=["Events"])
def remove_guest(
    event_id: int,
    user_id: int,
    actor: Actor = Depends(get_actor),
    service: LedgerService = Depends(get_service),
) -> Event:
    return service.events.remove_guest(actor, event_id, user_id)


@app.post("/events/{event_id}/transactions", response_model=list[Transaction],
          status_code=status.HTTP_201_CREATED, tags=["Events"])
def award_event_points(
    event_id: int,
    body: dict[str, Any] = Body(...),
    actor: Actor = Depends(get_actor),
    service: LedgerService = Depends(get_service),
) -> list[Transaction]:
    return service.award_event_points(
        actor,
        event_id,
        amount=body.get("amount"),
        user_id=body.get("user_id"),
        remark=body.get("remark", ""),
    )


if __name__ == "__main__":
    import uvicorn
    from .logging import configure_logging

    configure_logging(
        service_name=settings.service_name, environment=settings.environment,
        version=settings.version, level=settings.log_level, json_output=settings.log_json,
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)
