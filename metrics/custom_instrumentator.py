from prometheus_fastapi_instrumentator import Instrumentator, metrics


def build_instrumentator() -> Instrumentator:
    # one instance per app, the default registry rejects duplicate collectors
    instrumentator = Instrumentator(
        should_ignore_untemplated=True,      # /orders/123 -> /orders/{order_id}
        excluded_handlers=["/metrics", "/api/v1/health"],
        should_instrument_requests_inprogress=True,
        should_group_status_codes=False,
    )
    instrumentator.add(metrics.default(latency_lowr_buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10)))
    return instrumentator
