from __future__ import annotations

from typing import Any

from aws_lambda_powertools import Logger
from mangum import Mangum
from mangum.types import LambdaContext

from minibus.api import app, metrics
from minibus.config import RESOURCE_ID

logger = Logger()
logger.append_keys(resource_id=RESOURCE_ID)

handler = Mangum(app, lifespan="off")


@metrics.log_metrics
def lambda_handler(event: dict[str, Any], context: LambdaContext) -> Any:
    # API Gateway HTTP API v2.0 events built by hand (local runs, tests) lack
    # the request context fields Mangum reads
    if isinstance(event, dict) and event.get("version") == "2.0":
        request_context = event.setdefault("requestContext", {})
        http_ctx = request_context.setdefault("http", {})
        http_ctx.setdefault("sourceIp", "127.0.0.1")
        http_ctx.setdefault("userAgent", "local")
        request_context.setdefault("stage", "$default")

    return handler(event, context)
