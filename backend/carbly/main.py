from contextlib import asynccontextmanager

from fastapi import FastAPI
from carbly.api.v1.endpoints import (
    users, teams, vehicles, customers, reservations, templates, communications, public, webhooks,
)
from carbly.core.async_context import close_async_context
from carbly.core.exceptions import CarblyError, carbly_error_handler
from carbly.core.logging_config import configure_logging


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging()
    yield
    await close_async_context()


app = FastAPI(
    title="Carbly API",
    description="Reservations, payments and contracts for car rental agencies.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_exception_handler(CarblyError, carbly_error_handler)

app.include_router(users.router, prefix="/api/v1/users", tags=["Users"])
app.include_router(teams.router, prefix="/api/v1/teams", tags=["Teams"])
app.include_router(vehicles.router, prefix="/api/v1/vehicles", tags=["Vehicles"])
app.include_router(customers.router, prefix="/api/v1/customers", tags=["Customers"])
app.include_router(reservations.router, prefix="/api/v1/reservations", tags=["Reservations"])
app.include_router(templates.router, prefix="/api/v1/templates", tags=["Templates"])
app.include_router(communications.router, prefix="/api/v1/communications", tags=["Communications"])

# Magic-link routes used by customers, no user session
app.include_router(public.router, prefix="/public/v1/reservations", tags=["Public"])

app.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])


@app.get("/health", tags=["Health"])
def health_check():
    return {"status": "ok"}
