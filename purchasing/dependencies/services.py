from fastapi import Request

from purchasing.services.lifecycle import OrderLifecycle
from purchasing.services.stats import OrderStatsService
from purchasing.stores.base import Stores


# The app lifespan builds these once and hangs them on app.state
def get_stores(request: Request) -> Stores:
    return request.app.state.stores


def get_lifecycle(request: Request) -> OrderLifecycle:
    return request.app.state.lifecycle


def get_stats(request: Request) -> OrderStatsService:
    return request.app.state.stats
