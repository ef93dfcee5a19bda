"""Tests for the tool execution pipeline."""

import asyncio
import time
import uuid

import pytest

from app.core.logging_context import get_call_id
from app.services.db_service import DBService
from app.tools.base import ExecutionContext, ExecutionResult, ToolDefinition, ToolErrorCode
from app.tools.catalog import ToolCatalog
from app.tools.executor import ToolExecutor

TENANT_ID = str(uuid.uuid4())

PARAMS = {
    "type": "object",
    "properties": {
        "date": {"type": "string"},
        "partySize": {"type": "integer", "minimum": 1},
        "durationMinutes": {"type": "integer", "default": 30},
    },
    "required": ["date"],
}


async def echo(params, context):
    return ExecutionResult.ok("Listo", data={"params": params, "call_id": get_call_id()})


async def explode(params, context):
    raise ValueError("boom")


async def wrong_type(params, context):
    return {"success": True}


async def silent(params, context):
    return ExecutionResult.ok("")


def tool(name, handler, **overrides) -> ToolDefinition:
    values = dict(
        name=name,
        description=name,
        category="test",
        parameters=PARAMS if name == "echo" else {"type": "object", "properties": {}},
        handler=handler,
        enabled_for=("dental_standard",),
    )
    values.update(overrides)
    return ToolDefinition(**values)


def context(locale="es", assistant_type="dental_standard") -> ExecutionContext:
    return ExecutionContext(
        tenant_id=TENANT_ID,
        call_id="call-abc",
        assistant_type=assistant_type,
        locale=locale,
    )


@pytest.fixture
def catalog():
    return ToolCatalog([
        tool("echo", echo),
        tool("explode", explode),
        tool("wrong_type", wrong_type),
        tool("silent", silent),
    ])


@pytest.fixture
def executor(catalog):
    return ToolExecutor(catalog, log_executions=False)


class TestLookupAndValidation:
    @pytest.mark.asyncio
    async def test_unknown_tool(self, executor):
        result = await executor.execute("nope", {}, context())
        assert result.success is False
        assert result.error_code == ToolErrorCode.TOOL_NOT_FOUND.value
        assert result.voice_message == "Lo siento, no puedo realizar esa acción en este momento."

    @pytest.mark.asyncio
    async def test_not_enabled_for_assistant(self, executor):
        result = await executor.execute("echo", {"date": "2026-03-03"}, context(assistant_type="rest_basic"))
        assert result.error_code == ToolErrorCode.TOOL_NOT_ENABLED.value

    @pytest.mark.asyncio
    async def test_invalid_params_lists_every_issue(self, executor):
        result = await executor.execute("echo", {"partySize": 0}, context(locale="en"))
        assert result.error_code == ToolErrorCode.INVALID_PARAMS.value
        assert result.voice_message == "Some details are missing. Could you provide them?"
        fields = {issue["field"] for issue in result.metadata["validation_errors"]}
        assert fields == {"date", "partySize"}

    @pytest.mark.asyncio
    async def test_defaults_are_applied_before_the_handler(self, executor):
        result = await executor.execute("echo", {"date": "2026-03-03"}, context())
        assert result.success is True
        assert result.data["params"]["durationMinutes"] == 30

    @pytest.mark.asyncio
    async def test_none_params_are_treated_as_empty(self, executor):
        result = await executor.execute("echo", None, context())
        assert result.error_code == ToolErrorCode.INVALID_PARAMS.value


class TestHandlerOutcomes:
    @pytest.mark.asyncio
    async def test_call_id_is_bound_while_running(self, executor):
        result = await executor.execute("echo", {"date": "2026-03-03"}, context())
        assert result.data["call_id"] == "call-abc"
        assert get_call_id() == "-"

    @pytest.mark.asyncio
    async def test_handler_exception_becomes_execution_error(self, executor):
        result = await executor.execute("explode", {}, context())
        assert result.success is False
        assert result.error_code == ToolErrorCode.EXECUTION_ERROR.value
        assert result.error == "boom"

    @pytest.mark.asyncio
    async def test_non_result_return_is_an_error(self, executor):
        result = await executor.execute("wrong_type", {}, context())
        assert result.error_code == ToolErrorCode.EXECUTION_ERROR.value

    @pytest.mark.asyncio
    async def test_empty_voice_message_is_filled(self, executor):
        result = await executor.execute("silent", {}, context(locale="en"))
        assert result.success is True
        assert result.voice_message == "Done."

    @pytest.mark.asyncio
    async def test_confirmation_is_delegated_to_the_catalog(self, executor):
        assert executor.requires_confirmation("echo") is False
        assert executor.get_confirmation_message("echo", {}) is None


class TestTimeouts:
    @pytest.mark.asyncio
    async def test_slow_handler_times_out_and_is_abandoned(self):
        release = asyncio.Event()

        async def slow(params, ctx):
            await release.wait()
            return ExecutionResult.ok("late")

        executor = ToolExecutor(
            ToolCatalog([tool("slow", slow, timeout_seconds=0.05)]),
            log_executions=False,
        )
        started = time.perf_counter()
        result = await executor.execute("slow", {}, context(locale="en"))
        elapsed = time.perf_counter() - started
        assert result.error_code == ToolErrorCode.TIMEOUT.value
        assert elapsed < 0.05 + 0.5
        assert result.voice_message == "This is taking too long. Please try again."
        assert executor.pending_abandoned == 1

        release.set()
        for _ in range(10):
            if executor.pending_abandoned == 0:
                break
            await asyncio.sleep(0.01)
        assert executor.pending_abandoned == 0

    @pytest.mark.asyncio
    async def test_aclose_cancels_abandoned_handlers(self):
        async def forever(params, ctx):
            await asyncio.sleep(60)

        executor = ToolExecutor(
            ToolCatalog([tool("forever", forever, timeout_seconds=0.01)]),
            log_executions=False,
        )
        await executor.execute("forever", {}, context())
        assert executor.pending_abandoned == 1
        await executor.aclose()
        assert executor.pending_abandoned == 0

    @pytest.mark.asyncio
    async def test_caller_cancellation_cancels_the_handler(self):
        started = asyncio.Event()
        cancelled = asyncio.Event()

        async def slow(params, ctx):
            started.set()
            try:
                await asyncio.sleep(60)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        executor = ToolExecutor(ToolCatalog([tool("slow", slow)]), log_executions=False)
        task = asyncio.ensure_future(executor.execute("slow", {}, context()))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.wait_for(cancelled.wait(), timeout=1)


class TestExecutionLog:
    @pytest.mark.asyncio
    async def test_one_row_per_execution(self, catalog, session_factory):
        executor = ToolExecutor(catalog, log_session_factory=session_factory)
        await executor.execute("echo", {"date": "2026-03-03"}, context())
        await executor.execute("explode", {}, context())

        async with session_factory() as session:
            rows = await DBService(session).get_tool_executions(TENANT_ID)
        by_tool = {row.tool_name: row for row in rows}
        assert set(by_tool) == {"echo", "explode"}
        assert by_tool["echo"].success is True
        assert by_tool["echo"].parameters == {"date": "2026-03-03"}
        assert by_tool["explode"].error_code == ToolErrorCode.EXECUTION_ERROR.value
        assert by_tool["explode"].call_id == "call-abc"

    @pytest.mark.asyncio
    async def test_log_failure_does_not_change_the_result(self, catalog):
        def broken_factory():
            raise RuntimeError("database down")

        executor = ToolExecutor(catalog, log_session_factory=broken_factory)
        result = await executor.execute("echo", {"date": "2026-03-03"}, context())
        assert result.success is True
