"""Shared pytest fixtures."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from vaultchat.ai.orchestration.approval import ApprovalGate
from vaultchat.ai.orchestration.tool_orchestrator import ExecutionLimiter, ToolOrchestrator
from vaultchat.ai.tools.registry import CapabilityRegistry

from tests.helpers import FakeExecutor, RecordingNotifier, ScriptedApprovalUI


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep logs and settings written during tests out of the real home directory."""

    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("VAULTCHAT_LOG_DIR", str(home / "logs"))
    for name in list(os.environ):
        if name.startswith("VAULTCHAT_") and name != "VAULTCHAT_LOG_DIR":
            monkeypatch.delenv(name, raising=False)
    return home


@pytest.fixture
def vault(tmp_path: Path) -> Path:
    root = tmp_path / "vault"
    (root / "projects").mkdir(parents=True)
    (root / ".obsidian").mkdir()
    (root / "alpha.md").write_text("# Alpha\n\nNotes about gardening and tomatoes.\n", encoding="utf-8")
    (root / "beta.md").write_text("# Beta\n\nA diary entry about rain.\n", encoding="utf-8")
    (root / "projects" / "tomato-plan.md").write_text("Plan: plant tomatoes in May.\n", encoding="utf-8")
    (root / ".obsidian" / "tomato.md").write_text("hidden tomato config\n", encoding="utf-8")
    (root / "image.png").write_bytes(b"\x89PNG")
    return root


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def ui() -> ScriptedApprovalUI:
    return ScriptedApprovalUI()


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def orchestrator(executor: FakeExecutor, ui: ScriptedApprovalUI, notifier: RecordingNotifier) -> ToolOrchestrator:
    registry = CapabilityRegistry([executor])
    return ToolOrchestrator(
        registry,
        ApprovalGate(ui),
        limiter=ExecutionLimiter(2),
        notifier=notifier,
    )
