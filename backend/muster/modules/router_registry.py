"""Central router registry for module-oriented composition."""
from __future__ import annotations

from fastapi import FastAPI

from muster.modules.attendance.router import ROUTERS as ATTENDANCE_ROUTERS
from muster.modules.ranks.router import ROUTERS as RANK_ROUTERS

ALL_ROUTERS = ATTENDANCE_ROUTERS + RANK_ROUTERS


def include_all_routers(app: FastAPI) -> None:
    for router in ALL_ROUTERS:
        app.include_router(router)
