from chart_render_service.api.main import create_app

__all__ = ["create_app"]
