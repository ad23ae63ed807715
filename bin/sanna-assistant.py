#!/usr/bin/env python3
"""Sanna assistant: interactive text session and background execution units."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys

from sanna.assistant.accessibility_runner import LocalAccessibilityLauncher, run_accessibility_job
from sanna.assistant.config import AssistantConfig, save_agent_config
from sanna.assistant.context import AgentContext
from sanna.assistant.conversation_pipeline import ConversationPipeline
from sanna.assistant.conversation_store import DisplayMessage
from sanna.assistant.errors import ConfigError, JobParseError
from sanna.assistant.foreground import MqttForegroundSignal
from sanna.assistant.llm import Message
from sanna.assistant.schedule_runner import ScheduleJob, run_scheduled_task
from sanna.assistant.timer_runner import TimerJob, run_timer_expired
from sanna.assistant.tool_factory import create_tool_registry
from sanna.assistant.wake import LocalWakeScheduler

LOGGER = logging.getLogger("sanna-assistant")

EXIT_COMMANDS = {"exit", "quit", "/exit", "/quit"}


class ChatSession:
    """Line-based interactive session that also hosts the local wake triggers."""

    def __init__(self, config: AssistantConfig, signal_: MqttForegroundSignal) -> None:
        if config.agent is None:
            raise ConfigError("No API key configured (set ANTHROPIC_API_KEY or OPENAI_API_KEY)")
        self.config = config
        self.agent = config.agent
        self.signal = signal_
        self.context = AgentContext.from_config(config, foreground=signal_)
        self.context.schedule_wake = LocalWakeScheduler(self._run_schedule, label="scheduler")
        self.context.timer_wake = LocalWakeScheduler(self._run_timer, label="timer")
        self.context.job_launcher = LocalAccessibilityLauncher(self.context)
        self.provider = self.context.provider_factory(self.agent.llm)
        self.registry = create_tool_registry(self.context, self.agent, provider=self.provider)
        self.pipeline = ConversationPipeline(
            self.provider,
            self.registry,
            self.agent,
            memory=self.context.memory,
            on_error=lambda message: print(f"[error] {message}", flush=True),
            on_tool_message=lambda message: print(f"  ... {message}", flush=True),
        )
        self._loop: asyncio.AbstractEventLoop | None = None

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        save_agent_config(self.config.storage.agent_config_path, self.agent)
        self.signal.connect()
        if self.signal.is_connected():
            self.signal.on_foreground(self._handle_foreground)
        await self._restore()
        await self._rearm()

    async def run(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                break
            text = line.strip()
            if not text:
                continue
            if text.lower() in EXIT_COMMANDS:
                break
            await self._show_pending()
            reply = await self.pipeline.process_utterance(text)
            if reply:
                print(f"sanna> {reply}", flush=True)
            await self._persist()

    async def shutdown(self) -> None:
        await self._persist()
        for wake in (self.context.schedule_wake, self.context.timer_wake):
            if isinstance(wake, LocalWakeScheduler):
                await wake.shutdown()
        if isinstance(self.context.job_launcher, LocalAccessibilityLauncher):
            await self.context.job_launcher.shutdown()
        self.signal.disconnect()

    async def _restore(self) -> None:
        history = await self.context.conversation.load_history()
        self.pipeline.import_history([Message(role=entry.role, content=entry.text) for entry in history])
        LOGGER.info("Loaded %d display message(s) from the last session", len(history))
        await self._show_pending()

    async def _rearm(self) -> None:
        for schedule in await self.context.schedules.get_all_schedules():
            if schedule.enabled and self.context.schedule_wake is not None:
                self.context.schedule_wake.arm(schedule.id, schedule.trigger_at_ms)
        for timer in await self.context.timers.get_all_timers():
            if timer.enabled and self.context.timer_wake is not None:
                self.context.timer_wake.arm(timer.id, timer.fires_at_ms)

    async def _show_pending(self) -> None:
        for entry in await self.pipeline.drain_pending(self.context.conversation):
            print(f"sanna> {entry.text}", flush=True)

    async def _persist(self) -> None:
        shown = [
            DisplayMessage(role=message.role, text=message.content, timestamp=self.context.clock())
            for message in self.pipeline.export_history()
            if message.role in ("user", "assistant") and message.content and not message.tool_calls
        ]
        await self.context.conversation.save_history(shown)

    def _handle_foreground(self, reason: str) -> None:
        if self._loop is None:
            return
        LOGGER.debug("Foreground requested: %s", reason)
        asyncio.run_coroutine_threadsafe(self._show_pending(), self._loop)

    async def _run_schedule(self, schedule_id: str) -> None:
        await run_scheduled_task(ScheduleJob(schedule_id), self.context)
        if not self.signal.is_connected():
            await self._show_pending()

    async def _run_timer(self, timer_id: str) -> None:
        await run_timer_expired(TimerJob(timer_id), self.context)
        if not self.signal.is_connected():
            await self._show_pending()


async def run_chat(config: AssistantConfig) -> None:
    signal_ = MqttForegroundSignal(config.mqtt, logging.getLogger("sanna.mqtt"))
    session = ChatSession(config, signal_)
    await session.start()

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _handle_signal(signum: int) -> None:
        LOGGER.info("Received signal %s, shutting down", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    run_task = asyncio.create_task(session.run(stop_event))
    stop_task = asyncio.create_task(stop_event.wait())
    await asyncio.wait({run_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    await session.shutdown()
    for task in (run_task, stop_task):
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


async def run_background(config: AssistantConfig, command: str, payload: str) -> None:
    """One-shot execution unit, invoked by an external wake facility such as a systemd timer."""
    signal_ = MqttForegroundSignal(config.mqtt, logging.getLogger("sanna.mqtt"))
    context = AgentContext.from_config(config, foreground=signal_)
    try:
        if command == "run-schedule":
            await run_scheduled_task(ScheduleJob.from_payload(payload), context)
        elif command == "run-timer":
            await run_timer_expired(TimerJob.from_payload(payload), context)
        else:
            await run_accessibility_job(payload, context)
    finally:
        signal_.disconnect()


async def main() -> None:
    parser = argparse.ArgumentParser(description="Sanna assistant")
    parser.add_argument("--log-level", default="INFO")
    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("chat", help="Interactive text session (default)")
    schedule_parser = subparsers.add_parser("run-schedule", help="Execute one scheduled task")
    schedule_parser.add_argument("schedule_id")
    timer_parser = subparsers.add_parser("run-timer", help="Handle one expired timer")
    timer_parser.add_argument("timer_id")
    accessibility_parser = subparsers.add_parser("run-accessibility", help="Run one accessibility job")
    accessibility_parser.add_argument("job_json")
    args = parser.parse_args()
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))

    config = AssistantConfig.from_env()
    command = args.command or "chat"
    if command == "chat":
        await run_chat(config)
        return
    payload = {
        "run-schedule": getattr(args, "schedule_id", ""),
        "run-timer": getattr(args, "timer_id", ""),
        "run-accessibility": getattr(args, "job_json", ""),
    }[command]
    try:
        await run_background(config, command, payload)
    except JobParseError as exc:
        LOGGER.error("Invalid job payload: %s", exc)
        raise SystemExit(2) from exc


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except ConfigError as exc:
        LOGGER.error("%s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        pass
