"""
CLI entry point to run a one-off composition through the compose orchestrator.

Example:
    python -m astradio_worker.generate --mode sky --latitude 40.7128 \
        --longitude -74.0060 --datetime 2025-01-01T12:00:00Z
"""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any, Dict, Optional

from pydantic import ValidationError

from .app.models import ComposeRequest
from .app.settings import Settings
from .services.exceptions import ComposeFailure
from .services.orchestrator import ComposeOrchestrator


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compose a track plan via the Astradio worker.")
    parser.add_argument(
        "--mode",
        choices=("sky", "overlay", "sandbox", "compatibility"),
        default="sandbox",
        help="Compose mode (defaults to sandbox).",
    )
    parser.add_argument("--latitude", type=float, default=None, help="Sky/current latitude.")
    parser.add_argument("--longitude", type=float, default=None, help="Sky/current longitude.")
    parser.add_argument("--datetime", dest="moment", default=None, help="Sky/current ISO datetime.")
    parser.add_argument("--natal-latitude", type=float, default=None)
    parser.add_argument("--natal-longitude", type=float, default=None)
    parser.add_argument("--natal-datetime", dest="natal_moment", default=None)
    parser.add_argument(
        "--controls",
        default=None,
        help='Sandbox overrides as JSON, e.g. \'{"arc_shape": 0.6}\'.',
    )
    parser.add_argument("--compatibility-score", type=float, default=None)
    parser.add_argument("--seed", default=None, help="Optional seed recorded in provenance.")
    parser.add_argument(
        "--force-fail",
        action="store_true",
        help="Force the calibrated gate to fail (fail-closed text check).",
    )
    return parser.parse_args(argv)


def build_request(args: argparse.Namespace) -> Dict[str, Any]:
    body: Dict[str, Any] = {"mode": args.mode}
    if args.mode == "sky":
        body["skyParams"] = {
            "latitude": args.latitude,
            "longitude": args.longitude,
            "datetime": args.moment,
        }
    elif args.mode == "overlay":
        body["overlayParams"] = {
            "natalLatitude": args.natal_latitude,
            "natalLongitude": args.natal_longitude,
            "natalDatetime": args.natal_moment,
            "currentLatitude": args.latitude,
            "currentLongitude": args.longitude,
            "currentDatetime": args.moment,
        }
    elif args.mode == "sandbox":
        body["controls"] = json.loads(args.controls) if args.controls else {}
    elif args.compatibility_score is not None:
        body["compatibilityScore"] = args.compatibility_score
    if args.seed is not None:
        body["seed"] = args.seed
    if args.force_fail:
        body["testOverride"] = {"forceFail": True}
    return body


async def _run(body: Dict[str, Any], settings: Optional[Settings] = None) -> None:
    orchestrator = ComposeOrchestrator(settings or Settings())
    request = ComposeRequest.model_validate(body)
    response = await orchestrator.compose(request)

    report = response.gate_report
    print(f"controls_hash : {response.controls.hash}")
    print(f"element       : {response.astro.element_dominance.value}")
    print(f"modality      : {response.astro.modality.value}")
    print(f"calibrated    : {report.calibrated.overall}")
    print(f"strict        : {report.strict.overall}")
    print(f"template_id   : {response.text.blocks.template_id}")
    print(f"short         : {response.text.blocks.short}")
    print(f"audio_url     : {response.audio.url}")
    print(f"hash.control  : {response.hashes.control}")
    print(f"hash.audio    : {response.hashes.audio}")
    print(f"hash.explain  : {response.hashes.explanation}")


def main(argv: Optional[list[str]] = None) -> None:
    args = _parse_args(argv)
    try:
        body = build_request(args)
        asyncio.run(_run(body))
    except json.JSONDecodeError as exc:
        raise SystemExit(f"error: --controls is not valid JSON ({exc})") from exc
    except ValidationError as exc:
        raise SystemExit(f"error: invalid request ({exc.error_count()} problems)\n{exc}") from exc
    except ComposeFailure as exc:
        raise SystemExit(f"error: {exc}") from exc


if __name__ == "__main__":
    main()
