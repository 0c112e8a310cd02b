from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

import numpy as np

from looplace.config import NBackConfig, PvtConfig
from looplace.io import write_nback_trials_csv, write_pvt_trials_csv, write_summary_json
from looplace.nback import NBackEngine, generate_sequence
from looplace.replay import random_pvt_script, replay_nback, replay_pvt
from looplace.storage import QualityFlags, StorageError, SummaryStore
from looplace.types import TASK_NBACK, TASK_PVT, RunMode
from looplace.validate import (
    ConfigValidationError,
    validate_nback_config,
    validate_pvt_config,
)


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="looplace", description="Looplace task engines")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="cmd", required=True)

    seq = sub.add_parser("sequence", help="Print a generated 2-back letter sequence")
    seq.add_argument("--seed", required=False, type=int, default=1)
    seq.add_argument("--mode", choices=[m.value for m in RunMode], default="main")
    seq.add_argument("--run-id", required=False, type=int, default=1)
    seq.add_argument("--trials", required=False, type=int)
    seq.add_argument("--target-ratio", required=False, type=float)

    pvt = sub.add_parser("replay-pvt", help="Replay a scripted PVT run")
    src = pvt.add_mutually_exclusive_group(required=True)
    src.add_argument("--script", type=Path, help="JSON with 'config' and 'responses'")
    src.add_argument("--synthetic", type=int, help="Generate N normal-RT responses")
    pvt.add_argument("--seed", required=False, type=int, default=1)
    pvt.add_argument("--out-summary", required=True, type=Path)
    pvt.add_argument("--out-trials", required=False, type=Path)
    pvt.add_argument("--store", required=False, type=Path)

    nb = sub.add_parser("replay-nback", help="Replay a scripted 2-back run")
    nb.add_argument("--script", required=True, type=Path)
    nb.add_argument("--mode", choices=[m.value for m in RunMode], default="main")
    nb.add_argument("--out-summary", required=True, type=Path)
    nb.add_argument("--out-trials", required=False, type=Path)
    nb.add_argument("--store", required=False, type=Path)
    return p


def _load_script(path: Path) -> dict[str, Any]:
    raw = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(raw, list):
        return {"responses": raw}
    return raw


def _cmd_sequence(args: argparse.Namespace) -> int:
    overrides: dict[str, Any] = {"seed": args.seed}
    if args.trials is not None:
        overrides["total_trials"] = args.trials
        overrides["practice_trials"] = args.trials
    if args.target_ratio is not None:
        overrides["target_ratio"] = args.target_ratio
    config = NBackConfig.from_json(overrides)
    validate_nback_config(config)

    mode = RunMode(args.mode)
    engine = NBackEngine(config)
    length = config.practice_trials if mode is RunMode.PRACTICE else config.total_trials
    rng = np.random.default_rng(engine.seed_for(mode, args.run_id))
    for t in generate_sequence(length, config.target_ratio, rng):
        print(
            json.dumps(
                {
                    "index": t.index,
                    "letter": t.letter,
                    "is_target": t.is_target,
                    "is_lure": t.is_lure,
                }
            )
        )
    return 0


def _cmd_replay_pvt(args: argparse.Namespace) -> int:
    if args.script is not None:
        script = _load_script(args.script)
        config = PvtConfig.from_json(script.get("config"))
        responses = script.get("responses", [])
    else:
        config = PvtConfig(target_trials=args.synthetic, seed=args.seed)
        responses = random_pvt_script(args.synthetic, seed=args.seed)
    validate_pvt_config(config)

    result = replay_pvt(responses, config)
    assert result.metrics is not None
    write_summary_json(
        args.out_summary,
        {"task": TASK_PVT, "config": config.to_json(), "metrics": result.metrics.to_json()},
    )
    if args.out_trials:
        write_pvt_trials_csv(args.out_trials, result.engine.trials)
    if args.store:
        qc = QualityFlags(min_trials_met=result.metrics.meets_min_trial_requirement)
        SummaryStore(args.store).save(TASK_PVT, result.metrics, qc=qc)
    return 0


def _cmd_replay_nback(args: argparse.Namespace) -> int:
    script = _load_script(args.script)
    config = NBackConfig.from_json(script.get("config"))
    validate_nback_config(config)

    mode = RunMode(args.mode)
    result = replay_nback(script.get("responses", []), config, mode=mode)
    assert result.metrics is not None
    write_summary_json(
        args.out_summary,
        {
            "task": TASK_NBACK,
            "mode": mode.value,
            "config": config.to_json(),
            "metrics": result.metrics.to_json(),
        },
    )
    if args.out_trials:
        write_nback_trials_csv(args.out_trials, result.engine.trials)
    # Practice runs are never persisted.
    if args.store and mode is RunMode.MAIN:
        SummaryStore(args.store).save(TASK_NBACK, result.metrics)
    return 0


def main(argv: list[str] | None = None) -> int:
    p = _build_parser()
    args = p.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    handlers = {
        "sequence": _cmd_sequence,
        "replay-pvt": _cmd_replay_pvt,
        "replay-nback": _cmd_replay_nback,
    }
    handler = handlers.get(args.cmd)
    if handler is None:
        raise AssertionError(f"Unhandled command: {args.cmd}")

    try:
        return handler(args)
    except (ConfigValidationError, StorageError) as e:
        sys.stderr.write(f"looplace: {e}\n")
        return 2
