# wmsledger/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from wmsledger import __version__
from wmsledger.api.problem import problem_from_error
from wmsledger.core.config import get_settings
from wmsledger.core.logging import setup_logging
from wmsledger.db.base import init_models
from wmsledger.db.session import close_engines
from wmsledger.obs.metrics import PrometheusMiddleware
from wmsledger.services.errors import InventoryError

settings = get_settings()
setup_logging(settings.LOG_LEVEL, settings.JSON_LOG)
logger = logging.getLogger("wmsledger")

init_models()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    logger.info("wms-ledger %s starting env=%s", __version__, settings.ENV)
    yield
    await close_engines()


app = FastAPI(
    title="WMS-Ledger",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:5173",
        "http://localhost:5173",
        "http://127.0.0.1:8000",
        "http://localhost:8000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(PrometheusMiddleware)


@app.exception_handler(Exception)
async def _unhandled_exc(_req: Request, exc: Exception):
    logger.exception("UNHANDLED_EXC: %s", exc)
    return JSONResponse(status_code=500, content={"detail": "INTERNAL_ERROR"})


@app.exception_handler(InventoryError)
async def _inventory_exc(_req: Request, exc: InventoryError):
    return JSONResponse(status_code=exc.http_status, content={"detail": jsonable_encoder(problem_from_error(exc))})


@app.exception_handler(RequestValidationError)
async def _validation_exc(_req: Request, exc: RequestValidationError):
    # ctx 里可能带 ValueError 实例，先编码
    safe = jsonable_encoder(exc.errors())
    return JSONResponse(status_code=422, content={"detail": safe})


@app.exception_handler(HTTPException)
async def _http_exc(_req: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# ===========================
#        路由
# ===========================
from wmsledger.api.routers.adjustments import router as adjustments_router  # noqa: E402
from wmsledger.api.routers.cycle_counts import router as cycle_counts_router  # noqa: E402
from wmsledger.api.routers.expiry import router as expiry_router  # noqa: E402
from wmsledger.api.routers.grns import router as grns_router  # noqa: E402
from wmsledger.api.routers.ibts import router as ibts_router  # noqa: E402
from wmsledger.api.routers.putaway import router as putaway_router  # noqa: E402
from wmsledger.api.routers.reservations import router as reservations_router  # noqa: E402
from wmsledger.api.routers.stock import router as stock_router  # noqa: E402
from wmsledger.obs.metrics import router as metrics_router  # noqa: E402

# ===========================
#          挂载路由
# ===========================
# 内核：变动 / 查询 / 预占 / 对账
app.include_router(stock_router)
app.include_router(reservations_router)
app.include_router(expiry_router)

# 工作流：收货 → 上架；调拨；盘点 → 调整
app.include_router(grns_router)
app.include_router(putaway_router)
app.include_router(ibts_router)
app.include_router(cycle_counts_router)
app.include_router(adjustments_router)

# 观测
app.include_router(metrics_router)


@app.get("/healthz")
async def healthz():
    return {"ok": True}
