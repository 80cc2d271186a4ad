import logging
import os

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routers.users import users_router
from api.routers.admin import admin_router
from api.routers.work_order import router as orders_router
from api.routers.warehouse import router as warehouse_router
from api.routers.teams import router as teams_router
from api.routers.reports import router as reports_router
from api.routers.settings import router as settings_router
from api.services.errors import ServiceError

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
	title="Field CRM",
	description="Orders, dispatch, warehouse and settlement for field service modules",
	version="1",
	docs_url='/docs',
	openapi_url="/openapi.json"
)

# Configure CORS
app.add_middleware(
	CORSMiddleware,
	allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
        for e in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"code": "BAD_REQUEST", "message": "invalid input", "details": {"errors": errors}},
    )


# Mount routers
app.include_router(users_router, prefix="/api/v1")
app.include_router(admin_router, prefix="/api/v1")
app.include_router(orders_router, prefix="/api/v1")
app.include_router(warehouse_router, prefix="/api/v1")
app.include_router(teams_router, prefix="/api/v1")
app.include_router(reports_router, prefix="/api/v1")
app.include_router(settings_router, prefix="/api/v1")


@app.get('/ping', include_in_schema=True, status_code=status.HTTP_200_OK)
async def health():
    """
    Returns API health
    """
    return {'status': 'ok', 'ping': 'pong'}
