from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Mapping, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.clock import Clock, tenant_clock
from app.core.config import get_settings
from app.core.database import get_session_factory
from app.services.db_service import DBService
from app.services.voice_formatting import localized
from app.tools.base import ExecutionContext, ExecutionResult
from app.tools.executor import ToolExecutor

logger = logging.getLogger(__name__)

TENANT_NOT_FOUND = "TENANT_NOT_FOUND"


class ToolRouter:
    """Executes tool calls for a tenant (one DB session per call)."""

    def __init__(
        self,
        executor: ToolExecutor,
        session_factory: Optional[async_sessionmaker] = None,
        clock_factory: Callable[[str], Clock] = tenant_clock,
    ):
        self.executor = executor
        self.session_factory = session_factory
        self.clock_factory = clock_factory

    async def execute(
        self,
        tool_name: str,
        arguments: Optional[Mapping[str, Any]],
        *,
        tenant_id: str,
        call_id: Optional[str] = None,
        caller_phone: Optional[str] = None,
        branch_id: Optional[str] = None,
        locale: Optional[str] = None,
        assistant_type: Optional[str] = None,
        channel: str = "voice",
        entities: Optional[Mapping[str, Any]] = None,
    ) -> ExecutionResult:
        fallback_locale = locale or get_settings().default_locale
        factory = self.session_factory or get_session_factory()
        async with factory() as session:
            db_service = DBService(session)
            tenant = await db_service.get_tenant(tenant_id) if tenant_id else None
            if tenant is None or not tenant.is_active:
                logger.warning("Tool %s requested for unknown tenant %s", tool_name, tenant_id)
                return ExecutionResult.failure(
                    TENANT_NOT_FOUND,
                    localized(
                        fallback_locale,
                        "Lo siento, no puedo atender esa solicitud en este momento.",
                        "Sorry, I can't handle that request right now.",
                    ),
                    error=f"Tenant not found: {tenant_id}",
                )

            if not branch_id:
                branch = await db_service.get_default_branch(tenant.id)
                branch_id = str(branch.id) if branch is not None else None

            timezone = tenant.timezone or "UTC"
            context = ExecutionContext(
                tenant_id=str(tenant.id),
                call_id=call_id or f"call-{uuid.uuid4().hex[:12]}",
                assistant_type=assistant_type or tenant.assistant_type or "",
                db=db_service,
                locale=locale or tenant.locale or fallback_locale,
                channel=channel,
                branch_id=branch_id,
                vertical=tenant.vertical,
                timezone=timezone,
                caller_phone=caller_phone,
                entities=entities or {},
                clock=self.clock_factory(timezone),
            )
            return await self.executor.execute(tool_name, arguments, context)
