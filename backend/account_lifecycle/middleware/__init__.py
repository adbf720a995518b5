from account_lifecycle.middleware.request_log import RequestLoggingMiddleware
from account_lifecycle.middleware.security import AuditMiddleware, SecurityHeadersMiddleware

__all__ = ["AuditMiddleware", "RequestLoggingMiddleware", "SecurityHeadersMiddleware"]
