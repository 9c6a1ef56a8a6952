from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from orderstream.cli import app

runner = CliRunner()


def _write_reply(path: Path, *envelopes: dict[str, object]) -> Path:
    lines = [f"data: {json.dumps(envelope)}" for envelope in envelopes]
    path.write_text("\n".join([*lines, "data: [DONE]", ""]), encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _isolated(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("ORDERSTREAM_ENDPOINT_URL", raising=False)


def test_replay_prints_reply(tmp_path: Path) -> None:
    reply = _write_reply(
        tmp_path / "reply.ndjson",
        {"type": "content", "content": "Our butter chicken "},
        {"type": "content", "content": "is popular."},
        {"type": "suggested_actions", "actions": ["Add it", "See desserts"]},
        {"type": "metadata", "intent": "recommendation", "tools_used": ["search_menu"]},
    )

    result = runner.invoke(app, ["replay", str(reply), "--chunk-size", "7"])

    assert result.exit_code == 0, result.output
    assert "Our butter chicken is popular." in result.output
    assert "Add it | See desserts" in result.output
    assert "cart is empty" in result.output


def test_replay_confirms_proposal_against_catalog(tmp_path: Path) -> None:
    catalog = tmp_path / "menu.json"
    catalog.write_text(
        json.dumps([{"id": "m2", "name": "Garlic Naan", "price": 3.5, "variants": [{"id": "v1", "name": "Large"}]}]),
        encoding="utf-8",
    )
    reply = _write_reply(
        tmp_path / "reply.ndjson",
        {"type": "content", "content": "Add two garlic naan?"},
        {"type": "cart_proposal", "proposal": {"id": "p1", "items": [{"menu_item_id": "m2", "variant_id": "v1", "quantity": 2}]}},
    )

    result = runner.invoke(app, ["replay", str(reply), "--catalog", str(catalog), "--confirm"])

    assert result.exit_code == 0, result.output
    assert "applied 1 line(s)" in result.output
    assert "Garlic Naan" in result.output
    assert "Large" in result.output


def test_replay_without_confirm_discards_proposal(tmp_path: Path) -> None:
    reply = _write_reply(
        tmp_path / "reply.ndjson",
        {"type": "cart_proposal", "proposal": {"id": "p1", "items": [{"menu_item_id": "m2"}]}},
    )

    result = runner.invoke(app, ["replay", str(reply)])

    assert result.exit_code == 0, result.output
    assert "proposal discarded" in result.output
    assert "cart is empty" in result.output


def test_replay_missing_file_fails(tmp_path: Path) -> None:
    result = runner.invoke(app, ["replay", str(tmp_path / "missing.ndjson")])
    assert result.exit_code != 0


def test_send_requires_endpoint() -> None:
    result = runner.invoke(app, ["send", "hello"])

    assert result.exit_code == 2
    assert "ORDERSTREAM_ENDPOINT_URL" in result.output
