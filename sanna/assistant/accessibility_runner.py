"""
Accessibility job execution unit

Runs one ``AccessibilityJob`` in the background and reports through the
pending-output queue. Failures before a provider exists (bad job data, missing
agent configuration) are queued verbatim; every later failure is rephrased by
the model for the user's language and output style. The queue write always
precedes the foreground request.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from .accessibility import AccessibilityBridge, AccessibilityJob, condense_hints, run_accessibility_sub_agent
from .config import AgentConfig
from .context import AgentContext
from .errors import (
    AccessibilityServiceDisabledError,
    AppForegroundTimeoutError,
    ConfigError,
    JobParseError,
    SannaError,
)
from .llm import LLMProvider
from .system_prompt import formulate_response

LOGGER = logging.getLogger("sanna.accessibility_runner")

NO_WINDOW_MARKER = "No active window found"


async def run_accessibility_job(job_json: str, context: AgentContext) -> None:
    try:
        job = AccessibilityJob.from_json(job_json)
    except JobParseError as exc:
        LOGGER.error("[accessibility] %s: %r", exc, job_json)
        await context.deliver("UI automation failed: Invalid job data.", "accessibility")
        return

    try:
        config = context.config_loader()
    except ConfigError as exc:
        LOGGER.error("[accessibility] No usable agent configuration: %s", exc)
        await context.deliver(f"UI automation failed: {exc}", f"accessibility:{job.package_name}")
        return

    provider = context.provider_factory(config.llm)
    model = config.llm.resolved_model()
    memory = await _personal_memory(context)
    LOGGER.info("[accessibility] Job for %s: %s", job.package_name, job.goal)

    try:
        status, raw_message = await _automate(job, config, provider, model, memory, context)
    except SannaError as exc:
        LOGGER.warning("[accessibility] %s", exc)
        status, raw_message = "failed", str(exc)
    except Exception as exc:
        LOGGER.exception("[accessibility] Automation of %s failed", job.package_name)
        status, raw_message = "failed", f"UI automation failed unexpectedly: {exc}"

    message = await formulate_response(
        provider,
        model,
        subject=job.package_name,
        goal=job.goal,
        status=status,
        raw_message=raw_message,
        driving_mode=config.driving_mode,
        language=config.language,
        personal_memory=memory,
    )
    await context.deliver(message, f"accessibility:{job.package_name}")


async def _automate(
    job: AccessibilityJob,
    config: AgentConfig,
    provider: LLMProvider,
    model: str,
    memory: str,
    context: AgentContext,
) -> tuple[str, str]:
    bridge = context.accessibility
    if bridge is None or not await _service_enabled(bridge):
        raise AccessibilityServiceDisabledError(
            "The Sanna accessibility service is not enabled. Please enable it in the system accessibility settings."
        )

    if job.intent_action:
        try:
            await bridge.send_intent(job.intent_action, job.intent_uri, job.package_name)
        except Exception as exc:
            raise SannaError(f"Could not open the app: {exc}") from exc

    try:
        visible = await bridge.wait_for_app(job.package_name, context.foreground_wait_ms)
    except Exception:
        LOGGER.warning("[accessibility] Waiting for %s failed", job.package_name, exc_info=True)
        visible = False
    if not visible:
        raise AppForegroundTimeoutError(job.package_name, context.foreground_wait_ms)
    if job.intent_action:
        await context.sleep(context.settle_delay_ms / 1000)

    try:
        tree = await bridge.get_tree()
    except Exception as exc:
        raise SannaError(f"Could not read the UI tree: {exc}") from exc
    if not tree or NO_WINDOW_MARKER in tree:
        raise SannaError("No active window found. The app does not seem to be open.")

    previous_hint = await context.hints.get_hint(job.package_name)
    result = await run_accessibility_sub_agent(
        provider,
        model,
        bridge,
        package_name=job.package_name,
        goal=job.goal,
        tree=tree,
        hints=previous_hint,
        personal_memory=memory,
        max_iterations=config.limits.accessibility,
        tree_settle_delay_ms=context.tree_settle_delay_ms,
    )
    LOGGER.info("[accessibility] %s finished: %s after %d iteration(s)", job.package_name, result.status, result.iterations)

    if result.status != "timeout":
        try:
            hint = await condense_hints(
                provider,
                model,
                package_name=job.package_name,
                goal=job.goal,
                result=result,
                previous_hint=previous_hint,
                initial_tree=tree,
            )
            if hint:
                await context.hints.save_hint(job.package_name, hint)
        except Exception as exc:
            LOGGER.warning("[accessibility] Hint condensation for %s failed: %s", job.package_name, exc)
    return result.status, result.message


async def _service_enabled(bridge: AccessibilityBridge) -> bool:
    try:
        return bool(await bridge.is_service_enabled())
    except Exception:
        LOGGER.warning("[accessibility] Service check failed", exc_info=True)
        return False


async def _personal_memory(context: AgentContext) -> str:
    try:
        return await context.memory.get_memory()
    except Exception as exc:
        LOGGER.warning("[accessibility] Could not read personal memory: %s", exc)
        return ""


@dataclass
class LocalAccessibilityLauncher:
    """Runs accessibility jobs as tracked background tasks in this process."""

    context: AgentContext
    _tasks: set[asyncio.Task] = field(default_factory=set, init=False, repr=False)

    async def launch(self, job: AccessibilityJob) -> None:
        task = asyncio.create_task(run_accessibility_job(job.to_json(), self.context))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        LOGGER.debug("[accessibility] Launched job for %s", job.package_name)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
