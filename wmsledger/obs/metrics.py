# wmsledger/obs/metrics.py
import os
import time

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
    multiprocess,
)
from starlette.middleware.base import BaseHTTPMiddleware

http_requests_total = Counter("http_requests_total", "HTTP requests", ["method", "path", "code"])
http_request_duration = Histogram(
    "http_request_duration_seconds", "HTTP request duration seconds", ["method", "path"]
)

# 台账写入（每条 ledger 行 +1；按 reason 区分）
ledger_entries_total = Counter("ledger_entries_total", "Ledger rows appended", ["reason"])

# 被拒绝的库存动作（不足 / 并发冲突 ...）
stock_rejections_total = Counter("stock_rejections_total", "Rejected stock operations", ["error"])

# 工作流状态迁移
workflow_transitions_total = Counter(
    "workflow_transitions_total", "Workflow header transitions", ["workflow", "to_status"]
)

# 对账发现的 台账 / 快照 不一致
ledger_snapshot_mismatch_total = Counter(
    "ledger_snapshot_mismatch_total", "Snapshot keys whose balance disagrees with the ledger"
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        # 用路由模板做 label，避免 /grns/123 这类路径撑爆基数
        route = request.scope.get("route")
        path = getattr(route, "path", request.url.path)
        http_requests_total.labels(request.method, path, str(response.status_code)).inc()
        http_request_duration.labels(request.method, path).observe(elapsed)
        return response


router = APIRouter(tags=["ops"])


@router.get("/metrics")
def metrics() -> Response:
    """
    单进程直接导出默认 REGISTRY；
    设置了 PROMETHEUS_MULTIPROC_DIR 时合并各进程分片。
    """
    if os.environ.get("PROMETHEUS_MULTIPROC_DIR"):
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)
        payload = generate_latest(registry)
    else:
        payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)
