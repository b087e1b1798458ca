from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import create_engine, text

from scripts import run_server, seed_dataset
from visual_tracker.infrastructure.config import reset_settings
from visual_tracker.utils.seed import DEFAULT_OBJECTIVES


@pytest.fixture
def uvicorn_calls(monkeypatch: pytest.MonkeyPatch) -> list[tuple[str, dict[str, Any]]]:
    calls: list[tuple[str, dict[str, Any]]] = []

    def fake_run(app: str, **kwargs: Any) -> None:
        calls.append((app, kwargs))

    monkeypatch.setattr(run_server.uvicorn, "run", fake_run)
    return calls


def test_run_server_passes_arguments(uvicorn_calls) -> None:
    run_server.main(["--host", "127.0.0.1", "--port", "9001", "--no-reload"])

    assert uvicorn_calls == [
        ("visual_tracker.web.main:app", {"host": "127.0.0.1", "port": 9001, "reload": False})
    ]


def test_reload_follows_environment(uvicorn_calls, monkeypatch: pytest.MonkeyPatch) -> None:
    run_server.main([])
    assert uvicorn_calls[-1][1]["reload"] is False

    monkeypatch.setenv("APP_ENVIRONMENT", "development")
    reset_settings()
    run_server.main([])
    assert uvicorn_calls[-1][1]["reload"] is True


def test_seed_dataset_is_repeatable(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    db_path = tmp_path / "seed.db"

    assert seed_dataset.main(["--sqlite-path", str(db_path)]) == 0
    first = capsys.readouterr().out
    assert f"{len(DEFAULT_OBJECTIVES)} objectives, 3 expertise checks, 4 groups added" in first

    assert seed_dataset.main(["--sqlite-path", str(db_path), "--no-groups"]) == 0
    assert "0 objectives, 0 expertise checks, 0 groups added" in capsys.readouterr().out

    engine = create_engine(f"sqlite:///{db_path}")
    with engine.connect() as conn:
        count = conn.execute(text("SELECT COUNT(*) FROM learning_objectives")).scalar_one()
    engine.dispose()
    assert count == len(DEFAULT_OBJECTIVES)
