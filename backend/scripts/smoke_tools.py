from __future__ import annotations

import argparse
import asyncio
import json

from app.core.config import configure_logging, get_settings
from app.core.database import dispose_engine
from app.tools.executor import ToolExecutor
from app.tools.tool_definitions import build_default_catalog
from app.tools.tool_router import ToolRouter


async def run_smoke(
    tenant_id: str,
    tool_name: str,
    arguments: dict,
    caller_phone: str | None,
    locale: str | None,
) -> None:
    settings = get_settings()
    executor = ToolExecutor(
        build_default_catalog(),
        default_timeout=settings.tool_timeout_seconds,
        log_executions=settings.tool_execution_logging,
    )
    router = ToolRouter(executor)
    try:
        result = await router.execute(
            tool_name,
            arguments,
            tenant_id=tenant_id,
            call_id="smoke-test",
            caller_phone=caller_phone,
            locale=locale,
            channel="chat",
        )
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False, default=str))
    finally:
        await executor.aclose()
        await dispose_engine()


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one tool against the configured DB.")
    parser.add_argument("--tenant-id", required=True, help="Tenant UUID")
    parser.add_argument("--tool", required=True, help="Tool name, e.g. check_secure_availability")
    parser.add_argument("--args", default="{}", help="Tool arguments as a JSON object")
    parser.add_argument("--caller-phone", help="Caller phone number")
    parser.add_argument("--locale", choices=["es", "en"], help="Response language")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    configure_logging(get_settings())
    arguments = json.loads(args.args)
    if not isinstance(arguments, dict):
        raise SystemExit("--args must be a JSON object")
    asyncio.run(run_smoke(args.tenant_id, args.tool, arguments, args.caller_phone, args.locale))


if __name__ == "__main__":
    main()
