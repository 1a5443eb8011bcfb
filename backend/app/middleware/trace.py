from uuid import uuid4

from fastapi import Request, Response

DEFAULT_TRACE_ID_HEADER = "X-Trace-Id"


def make_trace_middleware(header_name: str = DEFAULT_TRACE_ID_HEADER):
    """
    追踪 ID 中间件
    - 优先使用客户端提供的 header_name
    - 写入 request.state.trace_id，供后续使用
    - 在响应头返回同一 trace id
    """

    async def trace_middleware(request: Request, call_next):
        trace_id = request.headers.get(header_name) or uuid4().hex
        request.state.trace_id = trace_id

        response: Response = await call_next(request)
        response.headers[header_name] = trace_id
        return response

    return trace_middleware
