import time
from contextlib import asynccontextmanager
from typing import List, Optional

import structlog
import uvicorn
from fastapi import Depends, FastAPI, Header, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from database import BillStore, connect
from errors import (
    ConcurrentModificationError,
    DependencyUnavailableError,
    InvalidStateError,
    LedgerError,
    LedgerInvariantError,
    NotFoundError,
    OverpaymentError,
    UnknownPatientError,
    ValidationError,
)
from identity import PatientServiceGateway
from ledger import BillLedger
from logging_config import configure_logging
from schemas import BillStatus, BillView, CreateBillIn, ItemIn, PaymentIn, PaymentResult, PaymentView
from settings import CORS_ORIGINS, LEDGER_MAX_RETRIES, PORT

log = structlog.get_logger(__name__)

# Most specific class first
ERROR_STATUS = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (InvalidStateError, 409),
    (OverpaymentError, 409),
    (ConcurrentModificationError, 409),
    (UnknownPatientError, 422),
    (DependencyUnavailableError, 503),
    (LedgerInvariantError, 500),
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    client = connect()
    identity = PatientServiceGateway()
    store = BillStore.from_client(client)
    store.ensure_indexes()
    app.state.ledger = BillLedger(store, identity, max_retries=LEDGER_MAX_RETRIES)
    log.info("billing_service_started", database=store.collection.database.name)
    try:
        yield
    finally:
        identity.close()
        client.close()
        log.info("billing_service_stopped")


app = FastAPI(title="MediTrack Billing API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    log.info(
        "http_request",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - start) * 1000, 1),
    )
    return response


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    status_code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    if status_code >= 500:
        log.error("ledger_error", code=exc.code, message=exc.message, path=request.url.path)
    return JSONResponse(status_code=status_code, content=jsonable_encoder({"error": exc.to_dict()}))


def get_ledger(request: Request) -> BillLedger:
    return request.app.state.ledger


@app.get("/test")
def test(ledger: BillLedger = Depends(get_ledger)):
    try:
        ledger.store.ping()
        return {"ok": True, "message": "DB connected"}
    except Exception as e:
        return {"ok": False, "error": str(e)}


@app.post("/api/bills", response_model=BillView, status_code=201)
def create_bill(body: CreateBillIn, ledger: BillLedger = Depends(get_ledger)):
    bill = ledger.create_bill(body.patient_ref, body.items)
    return BillView.from_bill(bill)


@app.get("/api/bills", response_model=List[BillView])
def list_bills(
    patient_ref: Optional[str] = None,
    status: Optional[BillStatus] = None,
    limit: int = 100,
    ledger: BillLedger = Depends(get_ledger),
):
    return [BillView.from_bill(b) for b in ledger.list_bills(patient_ref=patient_ref, status=status, limit=limit)]


@app.get("/api/bills/by-patient/{patient_ref}", response_model=List[BillView])
def bills_by_patient(patient_ref: str, limit: int = 100, ledger: BillLedger = Depends(get_ledger)):
    return [BillView.from_bill(b) for b in ledger.list_bills(patient_ref=patient_ref, limit=limit)]


@app.get("/api/bills/{bill_id}", response_model=BillView)
def get_bill(bill_id: str, ledger: BillLedger = Depends(get_ledger)):
    return BillView.from_bill(ledger.get_bill(bill_id))


@app.post("/api/bills/{bill_id}/items", response_model=BillView)
def add_item(bill_id: str, item: ItemIn, ledger: BillLedger = Depends(get_ledger)):
    return BillView.from_bill(ledger.add_item(bill_id, item))


@app.post("/api/bills/{bill_id}/pay", response_model=PaymentResult)
def pay_bill(
    bill_id: str,
    body: PaymentIn,
    idempotency_header: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    ledger: BillLedger = Depends(get_ledger),
):
    key = body.idempotency_key or idempotency_header
    if not key:
        raise ValidationError("an idempotency key is required (body field or Idempotency-Key header)")
    if body.idempotency_key and idempotency_header and body.idempotency_key != idempotency_header:
        raise ValidationError(
            "idempotency key in body does not match Idempotency-Key header",
            body=body.idempotency_key,
            header=idempotency_header,
        )
    bill, payment = ledger.pay_bill(bill_id, body.amount, body.method, key)
    return PaymentResult(bill=BillView.from_bill(bill), payment=PaymentView.from_payment(payment))


@app.post("/api/bills/{bill_id}/cancel", response_model=BillView)
def cancel_bill(bill_id: str, ledger: BillLedger = Depends(get_ledger)):
    return BillView.from_bill(ledger.cancel_bill(bill_id))


def run():
    uvicorn.run("main:app", host="0.0.0.0", port=PORT)


if __name__ == "__main__":
    run()
