from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import replace
from typing import Any, Dict, Mapping, Optional, Set

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.logging_context import bind_call_id
from app.services.db_service import DBService, as_uuid
from app.tools.base import ExecutionContext, ExecutionResult, ToolErrorCode
from app.tools.catalog import ToolCatalog

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0

MESSAGES = {
    ToolErrorCode.TOOL_NOT_FOUND: (
        "Lo siento, no puedo realizar esa acción en este momento.",
        "Sorry, I can't do that right now.",
    ),
    ToolErrorCode.TOOL_NOT_ENABLED: (
        "Esta función no está disponible.",
        "That feature isn't available.",
    ),
    ToolErrorCode.INVALID_PARAMS: (
        "Faltan algunos datos necesarios. ¿Podría proporcionarlos?",
        "Some details are missing. Could you provide them?",
    ),
    ToolErrorCode.TIMEOUT: (
        "La operación está tardando demasiado. Por favor intente de nuevo.",
        "This is taking too long. Please try again.",
    ),
    ToolErrorCode.EXECUTION_ERROR: (
        "Hubo un error al procesar su solicitud. Por favor intente de nuevo.",
        "There was an error processing your request. Please try again.",
    ),
}


def _jsonable(params: Mapping[str, Any]) -> Dict[str, Any]:
    return json.loads(json.dumps(dict(params), default=str))


class ToolExecutor:
    """
    Runs one tool call end to end: lookup, enablement, validation, the
    handler under a timeout, then one execution-log row.

    ``execute`` never raises for a tool failure; every outcome comes back as
    an ExecutionResult. A handler that outlives its timeout keeps running in
    the background and its result is dropped.
    """

    def __init__(
        self,
        catalog: ToolCatalog,
        *,
        default_timeout: float = DEFAULT_TIMEOUT_SECONDS,
        log_session_factory: Optional[async_sessionmaker] = None,
        log_executions: bool = True,
    ):
        self.catalog = catalog
        self.default_timeout = default_timeout
        self.log_session_factory = log_session_factory
        self.log_executions = log_executions
        self._abandoned: Set[asyncio.Task] = set()

    def requires_confirmation(self, name: str) -> bool:
        return self.catalog.requires_confirmation(name)

    def get_confirmation_message(self, name: str, params: Mapping[str, Any], locale: str = "es") -> Optional[str]:
        return self.catalog.get_confirmation_message(name, params, locale)

    async def execute(
        self,
        name: str,
        params: Optional[Mapping[str, Any]],
        context: ExecutionContext,
    ) -> ExecutionResult:
        params = dict(params or {})
        started = time.perf_counter()
        with bind_call_id(context.call_id):
            result = await self._run(name, params, context)
            if not result.voice_message:
                result = replace(result, voice_message=self._message(ToolErrorCode.EXECUTION_ERROR, context)
                                 if not result.success else context.say("Listo.", "Done."))
            duration_ms = int((time.perf_counter() - started) * 1000)
            logger.info(
                "Tool %s finished success=%s code=%s in %dms",
                name, result.success, result.error_code, duration_ms,
            )
            await self._log_execution(name, params, context, result, duration_ms)
            return result

    async def _run(self, name: str, params: Dict[str, Any], context: ExecutionContext) -> ExecutionResult:
        tool = self.catalog.get(name)
        if tool is None:
            logger.warning("Unknown tool requested: %s", name)
            return self._failure(ToolErrorCode.TOOL_NOT_FOUND, context, f"Tool not found: {name}")

        if not tool.is_enabled_for(context.assistant_type):
            return self._failure(
                ToolErrorCode.TOOL_NOT_ENABLED,
                context,
                f"Tool {name} is not enabled for {context.assistant_type}",
            )

        issues = self.catalog.validate(name, params)
        if issues:
            return self._failure(
                ToolErrorCode.INVALID_PARAMS,
                context,
                "Invalid parameters: " + "; ".join(issue.message for issue in issues),
                metadata={"validation_errors": [issue.to_dict() for issue in issues]},
            )
        params = self.catalog.apply_defaults(name, params)

        timeout = tool.timeout_seconds or self.default_timeout
        task = asyncio.ensure_future(tool.handler(params, context))
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task not in done:
            self._abandon(task, name, context.call_id)
            logger.warning("Tool %s timed out after %.1fs", name, timeout)
            return self._failure(ToolErrorCode.TIMEOUT, context, f"Tool {name} timed out after {timeout:g}s")

        try:
            result = task.result()
        except Exception as e:
            logger.exception("Tool %s raised", name)
            return self._failure(ToolErrorCode.EXECUTION_ERROR, context, str(e) or e.__class__.__name__)

        if not isinstance(result, ExecutionResult):
            return self._failure(
                ToolErrorCode.EXECUTION_ERROR,
                context,
                f"Tool {name} returned {type(result).__name__}, expected ExecutionResult",
            )
        return result

    def _message(self, code: ToolErrorCode, context: ExecutionContext) -> str:
        es, en = MESSAGES[code]
        return context.say(es, en)

    def _failure(
        self,
        code: ToolErrorCode,
        context: ExecutionContext,
        error: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ExecutionResult:
        return ExecutionResult.failure(
            code,
            self._message(code, context),
            error=error,
            metadata=metadata or {},
        )

    # ==================== TIMED-OUT WORK ====================

    def _abandon(self, task: asyncio.Task, name: str, call_id: str) -> None:
        self._abandoned.add(task)

        def _finished(t: asyncio.Task) -> None:
            self._abandoned.discard(t)
            if t.cancelled():
                logger.info("Timed-out tool %s (call %s) was cancelled", name, call_id)
                return
            error = t.exception()
            if error is not None:
                logger.warning("Timed-out tool %s (call %s) later failed: %s", name, call_id, error)
            else:
                logger.warning("Timed-out tool %s (call %s) completed late; result discarded", name, call_id)

        task.add_done_callback(_finished)

    @property
    def pending_abandoned(self) -> int:
        return len(self._abandoned)

    async def aclose(self) -> None:
        """Cancel handlers still running after a timeout."""
        tasks = list(self._abandoned)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ==================== EXECUTION LOG ====================

    async def _log_execution(
        self,
        name: str,
        params: Mapping[str, Any],
        context: ExecutionContext,
        result: ExecutionResult,
        duration_ms: int,
    ) -> None:
        if not self.log_executions:
            return
        entry = {
            "tenant_id": as_uuid(context.tenant_id),
            "branch_id": as_uuid(context.branch_id),
            "call_id": context.call_id,
            "tool_name": name,
            "parameters": _jsonable(params),
            "success": result.success,
            "error_code": result.error_code,
            "error": result.error,
            "duration_ms": duration_ms,
        }
        try:
            if self.log_session_factory is not None:
                async with self.log_session_factory() as session:
                    await DBService(session).log_tool_execution(entry)
            elif context.db is not None:
                await context.db.log_tool_execution(entry)
        except Exception as e:
            logger.warning("Failed to write execution log for %s: %s", name, e)
