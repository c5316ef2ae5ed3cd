# ─────────────────────────────────────────────────────────────────────────────
# Prometheus Metrics Endpoint — text exposition format
# ─────────────────────────────────────────────────────────────────────────────
# GET /metrics/prometheus → text/plain Prometheus format
# Bridges GenerationMetrics → prometheus-client gauges.
# ─────────────────────────────────────────────────────────────────────────────

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from prometheus_client import CollectorRegistry, Gauge, generate_latest

from ps2cam.dependencies import get_metrics, get_quota
from ps2cam.services.metrics import GenerationMetrics
from ps2cam.services.quota import UploadQuota

router = APIRouter()

# ── Prometheus metrics (custom registry to avoid default process metrics) ─────

_registry = CollectorRegistry()

_requests_total = Gauge(
    "ps2cam_generations_total",
    "Generations handled, by outcome",
    ["outcome"],
    registry=_registry,
)

_polls_total = Gauge(
    "ps2cam_prediction_polls_total",
    "Status checks sent to the prediction provider",
    registry=_registry,
)

_latency_ms = Gauge(
    "ps2cam_generation_latency_ms",
    "Successful generation latency in milliseconds",
    ["quantile"],
    registry=_registry,
)

_quota_enabled = Gauge(
    "ps2cam_upload_quota_enabled",
    "Whether the per-client upload quota is enforced (1) or bypassed (0)",
    registry=_registry,
)


def _sync_metrics(metrics: GenerationMetrics, quota: UploadQuota) -> None:
    """Sync GenerationMetrics data into Prometheus gauges."""
    data = metrics.to_dict()

    for outcome, count in data["outcomes"].items():
        _requests_total.labels(outcome=outcome).set(count)
    _polls_total.set(data["polls_total"])
    _latency_ms.labels(quantile="0.5").set(data["latency_p50_ms"])
    _latency_ms.labels(quantile="0.95").set(data["latency_p95_ms"])
    _quota_enabled.set(1 if quota.enabled else 0)


@router.get("/metrics/prometheus")
async def prometheus_metrics(
    metrics: GenerationMetrics = Depends(get_metrics),
    quota: UploadQuota = Depends(get_quota),
) -> Response:
    """Prometheus text exposition format metrics endpoint."""
    _sync_metrics(metrics, quota)
    return Response(
        content=generate_latest(_registry),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
