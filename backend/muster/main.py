from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, HTTPException
from sqlalchemy import text
from sqlalchemy.orm import Session

from muster.core.logging import RequestLoggingMiddleware, configure_logging
from muster.core.observability import PrometheusMiddleware, metrics_endpoint
from muster.core.settings import settings
from muster.db.session import get_db
from muster.modules.router_registry import include_all_routers

configure_logging(level=settings.log_level)
logger = logging.getLogger(__name__)

if settings.is_production and settings.jwt_secret.startswith("change_me"):
    raise RuntimeError("JWT_SECRET must be set in production")

app = FastAPI(title=settings.project_name, version=settings.project_version)

app.add_middleware(PrometheusMiddleware)
app.add_middleware(RequestLoggingMiddleware)

app.add_api_route("/metrics", metrics_endpoint, methods=["GET"], tags=["observability"], include_in_schema=False)

include_all_routers(app)


@app.get("/healthz", tags=["health"])
def healthcheck(db: Session = Depends(get_db)) -> dict[str, str]:
    try:
        db.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("healthcheck_failed: %s", exc, exc_info=True)
        raise HTTPException(status_code=503, detail="Service unavailable") from exc
    return {"status": "ok", "database": "ok"}
