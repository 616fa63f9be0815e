"""
Middleware for store (sucursal) isolation and security headers
"""
from fastapi import Request, status
from fastapi.responses import Response
from starlette.middleware.base import BaseHTTPMiddleware
from uuid import UUID
import logging

logger = logging.getLogger(__name__)


class StoreContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware that extracts store_id from the X-Store-ID header
    and sets it on request.state for use in endpoint handlers.

    The header is optional here; endpoints that need a store context
    enforce it through the get_store_scope dependency.
    """

    HEADER = "X-Store-ID"

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS":
            return await call_next(request)

        store_header = request.headers.get(self.HEADER)
        if not store_header:
            return await call_next(request)

        try:
            store_id = UUID(store_header)
        except ValueError:
            return Response(
                content='{"detail":"Invalid X-Store-ID format. Must be a valid UUID"}',
                status_code=status.HTTP_400_BAD_REQUEST,
                media_type="application/json"
            )

        request.state.store_id = store_id
        logger.debug(f"Request to {request.url.path} with store_id: {store_id}")

        response = await call_next(request)
        response.headers["X-Store-ID"] = str(store_id)
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add security headers for production
    """

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        return response
