from __future__ import annotations

from fastapi import Request

from tradescope.services import TradeScopeServices


def get_services(request: Request) -> TradeScopeServices:
    return request.app.state.services
