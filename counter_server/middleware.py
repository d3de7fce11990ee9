"""
Middleware for counter_server.

- HealthCheckAllowHttpMiddleware: load balancer health checks arrive over plain HTTP.
  Keep SECURE_SSL_REDIRECT from answering /health/ with a 301 and let any origin read it.
"""

from __future__ import annotations


def _is_health_path(request) -> bool:
    path = (request.path or "").rstrip("/") or "/"
    return path == "/health"


class HealthCheckAllowHttpMiddleware:
    """
    Run before SecurityMiddleware. For requests to /health/:
    - Mark the request as already secure so Django does not redirect HTTP -> HTTPS.
    - Add a permissive CORS header to the response.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        health = _is_health_path(request)
        if health:
            request.META["HTTP_X_FORWARDED_PROTO"] = "https"
        response = self.get_response(request)
        if health:
            response["Access-Control-Allow-Origin"] = "*"
        return response
