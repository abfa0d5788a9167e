# src/routine_audit/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from zoneinfo import ZoneInfo

from ..assignments.materializer import RoutineMaterializer
from ..boards.admin import AdminBoard
from ..boards.employee import EmployeeBoard
from .ports import PersistenceGateway
from .session import InactivityMonitor, Session


@dataclass
class AppState:
    # Store Settings on the state for easy access in other modules later.
    settings: Any

    gateway: PersistenceGateway
    session: Session
    tz: ZoneInfo
    materializer: RoutineMaterializer
    employee_board: EmployeeBoard
    admin_board: AdminBoard
    monitor: InactivityMonitor
