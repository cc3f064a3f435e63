import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from starlette.responses import JSONResponse, PlainTextResponse
from sse_starlette.sse import EventSourceResponse

from . import config
from .errors import BadRequest, ExpenseBackendError, NotFound
from .services.expenses import (
    ExpenseSummary,
    aggregate_all,
    aggregate_user,
    compute_summary,
    fetch_expenses,
    get_user_month,
    list_subcollections,
    set_approval,
)
from .services.firestore import create_client, get_db


logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class PeriodExpenses(BaseModel):
    period: str
    approved: bool
    expenses: List[Dict[str, Any]]


class UserExpensesResponse(BaseModel):
    username: Optional[str] = None
    periods: List[PeriodExpenses]


class UserPeriodItem(BaseModel):
    id: str
    username: Optional[str] = None
    month: str
    approved: bool


class MonthResponse(BaseModel):
    expenses: List[Dict[str, Any]]
    isApproved: bool
    userName: Optional[str] = None


class MessageResponse(BaseModel):
    message: str


class SummaryResponse(BaseModel):
    totalExpenses: float
    approvedExpenses: float
    rejectedExpenses: float


def _summary_response(summary: ExpenseSummary) -> SummaryResponse:
    return SummaryResponse(
        totalExpenses=float(summary.total),
        approvedExpenses=float(summary.approved),
        rejectedExpenses=float(summary.rejected),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Missing credentials abort startup
    if getattr(app.state, "db", None) is None:
        app.state.db = create_client()
    logger.info("Expense backend started, CORS origin %s", config.CORS_ORIGIN)
    yield
    logger.info("Expense backend stopped")


app = FastAPI(title="Expense Approval API", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.CORS_ORIGIN],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ExpenseBackendError)
async def expense_backend_error_handler(request: Request, exc: ExpenseBackendError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse({"detail": exc.message}, status_code=exc.status_code)


@app.get("/", response_class=PlainTextResponse)
def root():
    return "Hello World!"


@app.get("/health")
def health():
    return {"status": "ok", "service": "expense-backend"}


@app.get("/listSubcollections", response_model=List[str])
async def get_subcollections(docPath: Optional[str] = Query(default=None), db=Depends(get_db)):
    if not docPath:
        raise BadRequest("Document path is required")
    return await list_subcollections(db, docPath)


@app.get("/getUserExpenses", response_model=UserExpensesResponse)
async def get_user_expenses(userId: Optional[str] = Query(default=None), db=Depends(get_db)):
    if not userId:
        raise BadRequest("User ID is required")
    return await aggregate_user(db, userId)


@app.get("/getAllUserExpenses", response_model=List[UserPeriodItem])
async def get_all_user_expenses(db=Depends(get_db)):
    return await aggregate_all(db)


@app.get("/user/{user_id}/month/{month}", response_model=MonthResponse)
async def get_month(user_id: str, month: str, db=Depends(get_db)):
    return await get_user_month(db, user_id, month)


@app.post("/user/{user_id}/approve/{month}", response_model=MessageResponse)
async def approve_month(user_id: str, month: str, db=Depends(get_db)):
    if await set_approval(db, user_id, month, approved=True):
        return MessageResponse(message="Month approved successfully")
    return MessageResponse(message="Month already approved")


@app.post("/user/{user_id}/reject/{month}", response_model=MessageResponse)
async def reject_month(user_id: str, month: str, db=Depends(get_db)):
    if await set_approval(db, user_id, month, approved=False):
        return MessageResponse(message="Month rejected successfully")
    return MessageResponse(message="Month not approved previously")


@app.get("/expenses/summary", response_model=SummaryResponse)
async def expenses_summary(db=Depends(get_db)):
    return _summary_response(await compute_summary(db))


async def summary_events(
    db,
    interval: float = config.SUMMARY_STREAM_INTERVAL_SECONDS,
    max_polls: int = config.SUMMARY_STREAM_MAX_POLLS,
) -> AsyncGenerator[str, None]:
    """Poll the summary and yield a JSON payload each time the totals change."""
    last: Optional[Dict[str, float]] = None
    for poll in range(max_polls):
        try:
            current = _summary_response(await compute_summary(db)).model_dump()
        except NotFound:
            yield json.dumps({"error": "NOT_FOUND"})
            return
        except ExpenseBackendError:
            yield json.dumps({"error": "STORE_ERROR"})
            return

        if current != last:
            last = current
            yield json.dumps(current)

        if poll + 1 < max_polls:
            await asyncio.sleep(interval)

    yield json.dumps({"status": "TIMEOUT"})


@app.get("/expenses/summary/stream")
async def stream_summary(db=Depends(get_db)):
    """Stream summary totals via Server-Sent Events"""
    return EventSourceResponse(summary_events(db))


@app.get("/fetchExpenses")
async def get_expenses_map(db=Depends(get_db)):
    return await fetch_expenses(db)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("expense_backend.main:app", host="0.0.0.0", port=config.PORT)
