"""Tests for the price-adjustment sweep command."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import pytest

from task_market_service.services.task_store import TaskStore
from task_market_service.services.timestamps import to_iso
from task_market_service.sweep import main
from tests.helpers import make_config_yaml


@pytest.mark.unit
def test_sweep_command_prints_flagged_ids(tmp_path, monkeypatch, capsys) -> None:
    db_path = str(tmp_path / "cli.db")
    config_path = tmp_path / "config.yaml"
    config_path.write_text(make_config_yaml(db_path, str(tmp_path / "logs")))
    monkeypatch.setenv("CONFIG_PATH", str(config_path))
    monkeypatch.setattr("sys.argv", ["task-market-sweep", "--json"])

    created = datetime.now(UTC) - timedelta(hours=30)
    store = TaskStore(db_path=db_path)
    store.insert_task(
        {
            "id": "t-cli",
            "title": "Mow the lawn",
            "category": "yard_work",
            "zip_code": "94110",
            "price_cents": 3000,
            "status": "requested",
            "poster_id": "u-poster",
            "confirmation_code": "CLI001",
            "photos": [],
            "created_at": to_iso(created),
            "expires_at": to_iso(created + timedelta(days=5)),
        }
    )
    store.close()

    assert main() == 0
    assert json.loads(capsys.readouterr().out) == ["t-cli"]

    assert main() == 0
    assert json.loads(capsys.readouterr().out) == []
