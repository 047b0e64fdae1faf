from __future__ import annotations

from formroute.api.routes.forms import router as forms_router
from formroute.api.routes.health import router as health_router
from formroute.api.routes.submissions import router as submissions_router
from formroute.api.routes.submit import router as submit_router

__all__ = ["forms_router", "health_router", "submissions_router", "submit_router"]
