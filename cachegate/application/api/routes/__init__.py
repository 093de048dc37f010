from cachegate.application.api.routes.health import router as health_router

__all__ = ["health_router"]
