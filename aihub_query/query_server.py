from contextlib import asynccontextmanager
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import Counter, Histogram, make_asgi_app
import uvicorn

from aihub_query.common import (
    build_error_response,
    build_json_response,
    build_ok_response,
    epoch_ms,
    error_handler,
)
from aihub_query.config import (
    DEFAULT_HISTORY_LIMIT,
    LATENCY_BUCKETS,
    MAX_HISTORY_LIMIT,
    get_allowed_origins,
)
from aihub_query.query_handler import (
    QUERY_EXAMPLES,
    QueryRunner,
    handle_dataset_schema,
    handle_get_result,
    handle_list_results,
    handle_list_structured_datasets,
)
from aihub_query.security import get_caller
from aihub_query.types.connections import Connections
from aihub_query.types.query import QueryRequest, QueryStatus

logging.basicConfig(level=logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.conn = Connections()
    await app.state.conn.init_db()
    app.state.runner = QueryRunner(app.state.conn)
    yield
    await app.state.runner.shutdown()
    await app.state.conn.close()


app = FastAPI(lifespan=lifespan)
origins = get_allowed_origins()
logging.info(f"allowed origins are {origins}")
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

REQUEST_TOTAL = Counter("app_http_request_count", "Total App HTTP Request")
REQUEST_TOTAL_WITH_LABEL = Counter(
    "app_http_request_count_with_label",
    "Total App HTTP Request With Labels",
    ["endpoint"],
)
OVERALL_LATENCY_WITH_LABEL = Histogram(
    "app_http_request_overall_latency_ms",
    "Overall Latency of App HTTP Request With Labels",
    ["endpoint"],
    buckets=LATENCY_BUCKETS,
)


@app.middleware("http")
async def tracing(request: Request, call_next):
    start_time = epoch_ms()
    response = await call_next(request)
    # label by route template so record ids do not become label values
    route = request.scope.get("route")
    endpoint = route.path if route is not None else "unmatched"
    REQUEST_TOTAL.inc()
    REQUEST_TOTAL_WITH_LABEL.labels(endpoint).inc()
    OVERALL_LATENCY_WITH_LABEL.labels(endpoint).observe(epoch_ms() - start_time)
    return response


metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(loc) for loc in first["loc"] if loc != "body")
        message = f"{field}: {first['msg']}" if field else first["msg"]
    else:
        message = "invalid request"
    return build_error_response(status.HTTP_400_BAD_REQUEST, message)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    # raised from dependencies, outside error_handler
    return build_error_response(exc.status_code, exc.detail)


@app.get("/")
@app.get("/health")
async def default():
    return {"status": "ok"}


def parse_history_window(limit: str | None, offset: str | None) -> tuple[int, int]:
    try:
        parsed_limit = int(limit) if limit is not None else DEFAULT_HISTORY_LIMIT
    except ValueError:
        parsed_limit = DEFAULT_HISTORY_LIMIT
    if parsed_limit < 1:
        parsed_limit = DEFAULT_HISTORY_LIMIT
    try:
        parsed_offset = int(offset) if offset is not None else 0
    except ValueError:
        parsed_offset = 0
    return min(parsed_limit, MAX_HISTORY_LIMIT), max(parsed_offset, 0)


router = APIRouter(prefix="/api/query")


@router.post("/execute")
@error_handler
async def execute_query(
    request: Request,
    query: QueryRequest,
    user: Annotated[str, Depends(get_caller)],
):
    record = await request.app.state.runner.submit(user, query)
    if record.status == QueryStatus.completed:
        message = "Query execution completed."
    else:
        message = "Query execution failed."
    return build_json_response(status.HTTP_201_CREATED, message, record)


@router.get("/result/{record_id}")
@error_handler
async def get_result(
    request: Request, record_id: str, user: Annotated[str, Depends(get_caller)]
):
    record = await handle_get_result(request.app.state.conn, user, record_id)
    return build_ok_response(record)


@router.get("/results")
@error_handler
async def list_results(
    request: Request,
    user: Annotated[str, Depends(get_caller)],
    limit: str | None = None,
    offset: str | None = None,
):
    page_size, skip = parse_history_window(limit, offset)
    records = await handle_list_results(request.app.state.conn, user, page_size, skip)
    return build_ok_response(records)


@router.post("/cancel/{record_id}")
@error_handler
async def cancel_query(
    request: Request, record_id: str, user: Annotated[str, Depends(get_caller)]
):
    record = await request.app.state.runner.cancel(user, record_id)
    return build_ok_response(record, f"Query is {record.status.value}.")


@router.get("/datasets/structured")
@error_handler
async def list_structured_datasets(
    request: Request, user: Annotated[str, Depends(get_caller)]
):
    datasets = await handle_list_structured_datasets(request.app.state.conn, user)
    return build_ok_response(datasets)


@router.get("/datasets/{dataset_id}/schema")
@error_handler
async def get_dataset_schema(
    request: Request, dataset_id: str, user: Annotated[str, Depends(get_caller)]
):
    schema = await handle_dataset_schema(request.app.state.conn, user, dataset_id)
    return build_ok_response(schema)


@router.get("/examples")
@error_handler
async def get_query_examples(_: Annotated[str, Depends(get_caller)]):
    return build_ok_response(QUERY_EXAMPLES)


app.include_router(router)


def start():
    """Start production server"""
    uvicorn.run(
        "aihub_query.query_server:app",
        host="0.0.0.0",
        port=8000,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )


def start_dev():
    """Start development server with hot reload"""
    uvicorn.run(
        "aihub_query.query_server:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_dirs=["aihub_query"],
    )


if __name__ == "__main__":
    start_dev()
