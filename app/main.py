import logging
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from app.database import Base, engine
from app.routes import balances, events, trades, withdrawals
from app.config import settings
from app.services.errors import LedgerError, http_status_for
# Import all models to ensure they're registered with SQLAlchemy
from app.models.trade import Trade
from app.models.balance import BalanceEntry, LedgerEntry
from app.models.withdrawal import Withdrawal
from app.models.operation_log import OperationLog
from app.models.notification import Notification

logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

Base.metadata.create_all(bind=engine)

app = FastAPI(title=settings.APP_NAME)

app.include_router(trades.router)
app.include_router(withdrawals.router)
app.include_router(balances.router)
app.include_router(events.router)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    status_code = http_status_for(exc)
    if status_code >= 500:
        logging.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.get("/")
def root():
    return {"message": "Leveraged trade ledger API is running"}
