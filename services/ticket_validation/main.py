"""Service entry point para ticket validation"""
from fastapi import FastAPI
from slowapi.errors import RateLimitExceeded

from services.ticket_validation.routes.validation import router
from shared.utils.rate_limiter import limiter, rate_limit_exceeded_handler

app = FastAPI(title="Ticket Validation Service")
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.include_router(router, prefix="/api/v1/tickets", tags=["tickets"])
