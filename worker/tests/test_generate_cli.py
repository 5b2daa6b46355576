from __future__ import annotations

from pathlib import Path

import pytest

from astradio_worker.app.settings import Settings
from astradio_worker.generate import _parse_args, _run, build_request, main


def test_build_request_sky() -> None:
    args = _parse_args(
        [
            "--mode",
            "sky",
            "--latitude",
            "40.7128",
            "--longitude",
            "-74.006",
            "--datetime",
            "2025-01-01T12:00:00Z",
            "--seed",
            "fixed",
        ]
    )
    assert build_request(args) == {
        "mode": "sky",
        "skyParams": {"latitude": 40.7128, "longitude": -74.006, "datetime": "2025-01-01T12:00:00Z"},
        "seed": "fixed",
    }


def test_build_request_sandbox_with_force_fail() -> None:
    args = _parse_args(["--controls", '{"arc_shape": 0.6}', "--force-fail"])
    assert build_request(args) == {
        "mode": "sandbox",
        "controls": {"arc_shape": 0.6},
        "testOverride": {"forceFail": True},
    }


def test_build_request_compatibility() -> None:
    args = _parse_args(["--mode", "compatibility", "--compatibility-score", "0.8"])
    assert build_request(args) == {"mode": "compatibility", "compatibilityScore": 0.8}


@pytest.mark.asyncio
async def test_run_prints_summary(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    settings = Settings(min_rule_quality=0.0, log_dir=tmp_path)
    await _run({"mode": "sandbox", "controls": {}}, settings)

    output = capsys.readouterr().out
    assert "controls_hash : " in output
    assert "template_id   : " in output
    assert "hash.control  : sha256:" in output
    assert "audio_url     : /api/audio/" in output


def test_main_rejects_invalid_controls_json() -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["--controls", "{not json"])
    assert "not valid JSON" in str(excinfo.value)


def test_main_rejects_missing_sky_fields() -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["--mode", "sky"])
    assert "invalid request" in str(excinfo.value)
