from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from haemolink.core.config import settings
from haemolink.core.db import Base, engine
from haemolink.core.supabase import supabase_configured
from fastapi.middleware.cors import CORSMiddleware
from haemolink.domains.geolocation.router import router as geolocation_router
from haemolink.domains.payments import models as payment_models  # noqa: F401  (registers tables)
from haemolink.domains.payments.router import router as payments_router
from haemolink.domains.requests.router import router as requests_router
from haemolink.domains.rider.router import router as rider_router
from haemolink.domains.routing.router import router as routing_router
from haemolink.domains.tracking.router import router as tracking_router


app = FastAPI(title=settings.app_name)


@app.exception_handler(RequestValidationError)
async def _validation_exception_handler(request, exc: RequestValidationError):
    # Dev only; bodies can carry OTPs and tokens.
    if settings.env == "dev":
        print(f"[422] path={request.url.path} errors={exc.errors()}")
    return JSONResponse(status_code=422, content={"detail": exc.errors()})

# Patient and rider web apps call the API from the browser.
origins = [o.strip() for o in settings.cors_allow_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins if origins else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def _startup() -> None:
    # Only UPI preferences live locally; everything else is in the backend.
    Base.metadata.create_all(bind=engine)


@app.get("/health")
def health() -> dict:
    return {
        "ok": True,
        "service": settings.app_name,
        "env": settings.env,
        "supabase_configured": supabase_configured(),
    }


app.include_router(routing_router, tags=["routing"])
app.include_router(geolocation_router, tags=["geolocation"])
app.include_router(requests_router, tags=["requests"])
app.include_router(tracking_router, tags=["tracking"])
app.include_router(payments_router, tags=["payments"])
app.include_router(rider_router, tags=["rider"])
