"""Inventory service API built with FastAPI.

Owns the book catalog and the stock ledger. The web tier reads books
through ``GET /books/{book_id}`` and moves stock only through
``POST /decrement`` and ``POST /restore``, both keyed by order id so a
retried request never adjusts stock twice. Validation is performed with
Pydantic models; persistence is delegated to ``repo.InventoryRepo``.
"""

import logging
import time
import uuid
from typing import List

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pythonjsonlogger import jsonlogger
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from repo import InsufficientStock, InventoryRepo, engine, init_db

app = FastAPI(title="Inventory Service")

BookId = Field(min_length=1, max_length=64)

# logger JSON
logger = logging.getLogger("inventory")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)


@app.on_event("startup")
def _startup_db():
    # brief active wait until the DB accepts connections
    deadline = time.time() + 30
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            break
        except OperationalError:
            if time.time() > deadline:
                raise
            time.sleep(1)
    init_db()


class Item(BaseModel):
    """One line of a stock adjustment.

    Attributes:
        book_id: Catalog id of the book.
        quantity: Positive number of copies.
    """

    book_id: str = BookId
    quantity: int = Field(gt=0)


class LedgerRequest(BaseModel):
    """Request body for ``/decrement`` and ``/restore``.

    Attributes:
        order_id: Order the adjustment belongs to; the idempotency key.
        items: Books and quantities to adjust.
    """

    order_id: str = Field(min_length=1, max_length=64)
    items: List[Item] = Field(min_length=1)


class LedgerResponse(BaseModel):
    """``applied`` is False when the call was a repeat for the same order."""

    applied: bool


class BookOut(BaseModel):
    id: str
    title: str
    price_minor: int
    stock_quantity: int
    is_active: bool


@app.get("/health")
def health():
    """Liveness probe, also checking the database connection."""
    try:
        with engine.connect() as conn:
            conn.execute(text("select 1"))
        db_ok = True
    except OperationalError:
        db_ok = False
    return JSONResponse({"ok": db_ok, "components": {"db": {"ok": db_ok}}}, status_code=200 if db_ok else 503)


@app.get("/books/{book_id}", response_model=BookOut)
def get_book(book_id: str):
    book = InventoryRepo().get_book(book_id)
    if book is None:
        raise HTTPException(status_code=404, detail="NOT_FOUND")
    return BookOut(
        id=book.id,
        title=book.title,
        price_minor=book.price_minor,
        stock_quantity=book.stock_quantity,
        is_active=book.is_active,
    )


@app.post("/decrement", response_model=LedgerResponse)
def decrement(req: LedgerRequest):
    """Decrement stock for a whole order, all or nothing.

    Returns:
        LedgerResponse: ``applied`` True when stock moved, False for a repeat.

    Raises:
        HTTPException: 409 ``{detail: INSUFFICIENT_STOCK, book_id}`` when any
            book cannot cover its quantity; nothing is changed.
    """
    items = [(it.book_id, it.quantity) for it in req.items]
    try:
        applied = InventoryRepo().decrement(req.order_id, items)
    except InsufficientStock as e:
        logger.info("decrement rejected", extra={"order_id": req.order_id, "book_id": e.book_id})
        return JSONResponse(status_code=409, content={"detail": "INSUFFICIENT_STOCK", "book_id": e.book_id})
    logger.info("decrement", extra={"order_id": req.order_id, "applied": applied})
    return LedgerResponse(applied=applied)


@app.post("/restore", response_model=LedgerResponse)
def restore(req: LedgerRequest):
    items = [(it.book_id, it.quantity) for it in req.items]
    applied = InventoryRepo().restore(req.order_id, items)
    logger.info("restore", extra={"order_id": req.order_id, "applied": applied})
    return LedgerResponse(applied=applied)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    try:
        response = await call_next(request)
    finally:
        logger.info("request handled", extra={"request_id": rid, "path": request.url.path, "method": request.method})
    response.headers["X-Request-ID"] = rid
    return response
