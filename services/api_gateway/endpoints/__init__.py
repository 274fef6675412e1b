"""
API Gateway endpoint routers, mounted by the monitoring app.
"""

from services.api_gateway.endpoints.stats import router as stats_router

__all__ = ["stats_router"]
