from __future__ import annotations

from app.tools.call_control import call_control_tools
from app.tools.catalog import ToolCatalog
from app.tools.direct_booking import direct_booking_tools
from app.tools.secure_booking import secure_booking_tools


def build_default_catalog() -> ToolCatalog:
    """Every tool the service ships with, registered once at startup."""
    return ToolCatalog([*secure_booking_tools(), *direct_booking_tools(), *call_control_tools()])
