"""Command line host: runs one chat turn against a Markdown note."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import signal
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .ai.client import AIClient, ClientSettings
from .ai.orchestration.approval import ApprovalGate, ApprovalUI
from .ai.orchestration.coordinator import TurnConfig, TurnCoordinator, TurnSlot
from .ai.orchestration.model_events import ModelClient
from .ai.orchestration.tool_orchestrator import ExecutionLimiter, ToolOrchestrator
from .ai.orchestration.types import Message, TurnResult, TurnState
from .ai.tools.base import ExecutionLimits
from .ai.tools.registry import build_default_registry
from .console import ConsoleApprovalUI, ConsoleNotificationService
from .editor.document import MarkdownFileDocument
from .services.notifications import NotificationService
from .services.settings import SECRET_FIELDS, Settings, SettingsStore, redact_secret
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)

ASSISTANT_HEADING = "\n\n## Assistant\n\n"
SYSTEM_PROMPT = (
    "You are an assistant working inside the user's Markdown note vault. "
    "Your reply is inserted directly into the note, so answer in Markdown. "
    "You may search the vault, read vault files or search the web through the provided tools; "
    "every tool call and every result is reviewed by the user before you see it, "
    "and a call may come back cancelled or with only some results released."
)


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Configure structured logging for the command line host."""

    level = logging.DEBUG if debug else logging.INFO
    console_level = logging.DEBUG if debug else logging.WARNING
    logging_utils.setup_logging(level, console_level=console_level, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


def build_client_settings(settings: Settings, *, debug_logging: bool = False) -> ClientSettings:
    return ClientSettings(
        base_url=settings.base_url,
        api_key=settings.api_key,
        model=settings.model,
        organization=settings.organization,
        request_timeout=settings.request_timeout,
        max_retries=settings.max_retries,
        retry_min_seconds=settings.retry_min_seconds,
        retry_max_seconds=settings.retry_max_seconds,
        default_headers=settings.default_headers,
        metadata=settings.metadata,
        debug_logging=debug_logging or settings.debug_logging,
    )


def build_turn_config(settings: Settings) -> TurnConfig:
    return TurnConfig(
        max_rounds=_resolve_max_tool_rounds(settings),
        insert_mode=settings.insert_mode,
        flush_interval=max(1, int(settings.flush_interval_ms)) / 1000.0,
        temperature=settings.temperature,
    )


def build_messages(note_text: str, prompt: str) -> list[Message]:
    """System prompt, the current note as context, then the user's request."""

    messages = [Message.system(SYSTEM_PROMPT)]
    if note_text.strip():
        messages.append(Message.user(f"Current note:\n\n{note_text.strip()}"))
    messages.append(Message.user(prompt))
    return messages


async def run_chat(
    settings: Settings,
    note_path: Path,
    prompt: str,
    *,
    client: ModelClient | None = None,
    ui: ApprovalUI | None = None,
    notifier: NotificationService | None = None,
    debug_logging: bool = False,
) -> TurnResult:
    """Stream one turn into ``note_path`` and save the note afterwards."""

    document = MarkdownFileDocument(note_path)
    active_notifier = notifier or ConsoleNotificationService()
    owned_client = AIClient(build_client_settings(settings, debug_logging=debug_logging)) if client is None else None
    model_client: ModelClient = client or owned_client  # type: ignore[assignment]
    registry = build_default_registry(settings, current_document=document.path)
    orchestrator = ToolOrchestrator(
        registry,
        ApprovalGate(ui or ConsoleApprovalUI(), timeout=settings.approval_timeout),
        limits=ExecutionLimits(max_results=settings.max_results, preview_chars=settings.preview_chars),
        limiter=ExecutionLimiter(settings.max_concurrent_executions),
        notifier=active_notifier,
        execution_timeout=settings.execution_timeout,
        secrets=settings.secrets(),
    )
    coordinator = TurnCoordinator(
        model_client,
        orchestrator,
        config=build_turn_config(settings),
        notifier=active_notifier,
        secrets=settings.secrets(),
    )

    messages = build_messages(document.text, prompt)
    document.append(ASSISTANT_HEADING)
    slot = TurnSlot()
    handle = slot.start(coordinator, messages, document)
    remove_handler = _install_stop_handler(slot)
    try:
        result = await handle.wait()
    finally:
        remove_handler()
        await handle.aclose()
        await registry.aclose()
        if owned_client is not None:
            await owned_client.aclose()
        document.save()
    _LOGGER.info("Turn %s saved to %s (%s)", handle.turn_id, document.path, result.status.value)
    return result


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the `vaultchat` console script."""

    parser = _build_parser()
    args = parser.parse_args(argv)

    debug = bool(args.debug) or _env_flag("VAULTCHAT_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("VAULTCHAT_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return 2

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)
    logging_utils.redact_secrets(settings.secrets())

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return 0

    if settings.debug_logging and not debug:
        configure_logging(True, force=True)
        debug = True

    if not args.note:
        parser.print_usage(sys.stderr)
        print("A note path is required unless --dump-settings is given.", file=sys.stderr)
        return 2
    if not settings.api_key:
        print("No API key configured; use --set api_key=... or VAULTCHAT_API_KEY.", file=sys.stderr)
        return 2

    prompt = args.prompt or _read_prompt()
    if not prompt:
        print("Nothing to send.", file=sys.stderr)
        return 2

    try:
        result = asyncio.run(run_chat(settings, Path(args.note).expanduser(), prompt, debug_logging=debug))
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")
        return 130
    if result.status is TurnState.DONE:
        return 0
    if result.status is TurnState.CANCELLED:
        return 130
    return 1


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vaultchat",
        description="Chat with a model from a Markdown note, approving every tool call and result.",
    )
    parser.add_argument("note", nargs="?", help="Markdown note that receives the streamed reply.")
    parser.add_argument("--prompt", metavar="TEXT", help="Message to send; read from stdin when omitted.")
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.vaultchat/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")
    return parser


def _read_prompt() -> str:
    if sys.stdin.isatty():
        try:
            return input("Prompt: ").strip()
        except EOFError:
            return ""
    return sys.stdin.read().strip()


def _install_stop_handler(slot: TurnSlot):
    """Route Ctrl-C to the active turn instead of tearing down the loop."""

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, slot.stop)
    except (NotImplementedError, RuntimeError):  # pragma: no cover - platform dependent
        _LOGGER.debug("Signal handlers unavailable; Ctrl-C will interrupt the process")
        return lambda: None

    def _remove() -> None:
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.remove_signal_handler(signal.SIGINT)

    return _remove


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _resolve_max_tool_rounds(settings: Settings | None) -> int:
    """Clamp the configured round limit into a safe operating range."""

    raw_value = getattr(settings, "max_tool_rounds", 8) if settings else 8
    try:
        value = int(raw_value)
    except (TypeError, ValueError):
        value = 8
    return max(0, min(value, 50))


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    normalized = raw_value.strip()
    if _is_optional(annotation) and normalized.lower() in {"none", "null"}:
        return None
    target = _resolve_annotation(annotation)

    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if target is list:
        try:
            return json.loads(normalized or "[]")
        except json.JSONDecodeError as exc:
            raise ValueError("List overrides must be valid JSON arrays") from exc
    if target is dict:
        try:
            return json.loads(normalized or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError("Dict overrides must be valid JSON objects") from exc
    return normalized


def _is_optional(annotation: Any) -> bool:
    return get_origin(annotation) is not None and type(None) in get_args(annotation)


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin in {list, dict}:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return _resolve_annotation(args[0])


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    for field_name in SECRET_FIELDS:
        value = payload.get(field_name, "")
        if isinstance(value, str):
            payload[field_name] = redact_secret(value)
    metadata = {
        "path": str(store.path),
        "secret_backend": store.vault.strategy,
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    json.dump({"settings": payload, "meta": metadata}, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("VAULTCHAT_"))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
