# VIP Bar API
from vipbar.api.router import api_router

__all__ = ["api_router"]
