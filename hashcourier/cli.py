# hashcourier/cli.py
# --------------------------------------------------------------------------- #
# Operator entry point: inspect and maintain one project's challenge ledger,
# submission logs, fee pool and statistics. cron/pm2 friendly.
# --------------------------------------------------------------------------- #

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from loguru import logger
from tqdm import tqdm

from hashcourier.config import (
    DEFAULT_PROJECT_ID,
    FEE_POOL_SIZE,
    HASHCOURIER_HOME,
    MIN_MINUTES_REMAINING,
    RETENTION_DAYS,
    RETRY_WINDOW_HOURS,
)
from hashcourier.miner.errors import CourierError
from hashcourier.miner.logging import MinerPhase, miner_logger
from hashcourier.miner.models import RetrySummary
from hashcourier.miner.profile import Profile, load_profile
from hashcourier.miner.runtime import Coordinator
from hashcourier.utils.pretty_logs import mask

# ───────────────────── loguru setup ──────────────────────


def setup_logging(level: str = "INFO") -> None:
    """Configure Loguru once, honouring --log-level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> "
               "| <level>{level:<8}</level> | <level>{message}</level>",
        enqueue=True,
    )

# ───────────────────────── args ──────────────────────────


def _parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="hashcourier",
        description="Challenge ledger, submission reconciliation and fee-pool maintenance.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("--profile", type=Path, default=None,
                   help="Project profile YAML (defaults to the built-in project)")
    p.add_argument("--home", type=Path, default=HASHCOURIER_HOME, help="Storage base directory")
    p.add_argument("--log-level", default="INFO", help="Loguru level (DEBUG, INFO, WARNING …)")
    sub = p.add_subparsers(dest="command", required=True)

    best = sub.add_parser("best", help="Poll the authority and show the best challenge")
    best.add_argument("--min-minutes", type=float, default=MIN_MINUTES_REMAINING)
    best.add_argument("--no-poll", action="store_true", help="Use the ledger only")

    sub.add_parser("history", help="Reconciled receipts and active failures")

    retry = sub.add_parser("retry", help="Resubmit recent failed solutions")
    retry.add_argument("--window-hours", type=float, default=RETRY_WINDOW_HOURS)

    sub.add_parser("pool-prefetch", help=f"Fetch the {FEE_POOL_SIZE}-address fee pool")
    sub.add_parser("pool-status", help="Show fee pool state")

    stats = sub.add_parser("stats", help="Statistics snapshot")
    stats.add_argument("--json", action="store_true", help="Print the raw snapshot as JSON")

    export = sub.add_parser("export", help="Export valid challenges for seeding other instances")
    export.add_argument("--output", type=Path, default=None)

    seed = sub.add_parser("seed", help="Import exported challenges from a file or URL")
    seed.add_argument("source", help="Path to an export file or an http(s) URL")

    sweep = sub.add_parser("sweep", help="Drop ledger entries older than the retention horizon")
    sweep.add_argument("--days", type=int, default=RETENTION_DAYS)

    cfg = sub.add_parser("config", help="Show or change mining config")
    cfg_sub = cfg.add_subparsers(dest="config_command", required=True)
    cfg_sub.add_parser("show")
    cfg_set = cfg_sub.add_parser("set")
    cfg_set.add_argument("--worker-threads", type=int)
    cfg_set.add_argument("--batch-size", type=int)
    cfg_set.add_argument("--default-batch-size", action="store_true", help="Reset batch size to the authority default")
    cfg_set.add_argument("--grouping-mode", choices=["auto", "all-on-one", "grouped"])
    cfg_set.add_argument("--workers-per-address", type=int)

    return p.parse_args(list(argv) if argv is not None else None)

# ──────────────────────── commands ───────────────────────


def _cmd_best(c: Coordinator, args: argparse.Namespace) -> int:
    if not args.no_poll:
        c.poll_challenge()
    now = c.clock()
    miner_logger.challenge_table("Valid Challenges", c.challenges.valid_challenges(c.profile.id), now)
    best = c.best_challenge(args.min_minutes)
    if best is None:
        logger.warning(f"No challenge with more than {args.min_minutes} minutes left")
        return 1
    miner_logger.phase_panel(MinerPhase.CHALLENGES, "Best Challenge", [
        ("challenge", best.challenge_id),
        ("difficulty", best.difficulty),
        ("deadline", best.deadline.isoformat()),
        ("minutes left", int(best.minutes_remaining(now))),
        ("cohort size", len(c.selector.same_cohort(best.no_pre_mine, c.profile.id))),
    ])
    return 0


def _cmd_history(c: Coordinator, _args: argparse.Namespace) -> int:
    rec = c.reconcile_submissions()
    miner_logger.phase_panel(MinerPhase.SUBMISSIONS, "Submission Summary", list(rec.summary().items()))
    rows = [[
        h.address_index if h.address_index >= 0 else "?",
        mask(h.address),
        h.challenge_id,
        h.status,
        h.success_count,
        h.failure_count,
        h.last_attempt.strftime("%m-%d %H:%M"),
    ] for h in rec.address_history]
    if rows:
        miner_logger.phase_table(MinerPhase.SUBMISSIONS, "Address History",
                                 ["Idx", "Address", "Challenge", "Status", "OK", "Fail", "Last"], rows)
    miner_logger.failure_table(rec.active_failures)
    return 0


async def _cmd_retry(c: Coordinator, args: argparse.Namespace) -> int:
    candidates = c.retry.select_candidates(args.window_hours)
    if not candidates:
        logger.info(f"No failures to retry in the last {args.window_hours:g} hours")
        return 0
    summary = RetrySummary(total=len(candidates))
    with tqdm(total=len(candidates), desc="Retrying", unit="solution") as pbar:
        async for item in c.retry.stream(args.window_hours):
            summary.add(item)
            pbar.update(1)
    miner_logger.retry_summary(summary.total, summary.succeeded, summary.failed, int(args.window_hours))
    return 0 if summary.failed == 0 else 2


async def _cmd_pool_prefetch(c: Coordinator, _args: argparse.Namespace) -> int:
    with tqdm(total=FEE_POOL_SIZE, desc="Fee pool", unit="address") as pbar:
        result = await c.prefetch_fee_pool(on_progress=lambda _i, _ok: pbar.update(1))
    miner_logger.pool_summary(c.fee_pool_status())
    if not result.success:
        logger.error(result.error or "prefetch failed")
        return 1
    return 0


def _cmd_pool_status(c: Coordinator, _args: argparse.Namespace) -> int:
    miner_logger.pool_summary(c.fee_pool_status())
    return 0


def _cmd_stats(c: Coordinator, args: argparse.Namespace) -> int:
    snap = c.stats_snapshot()
    if args.json:
        print(json.dumps(snap, indent=2))
        return 0
    g = snap["global"]
    rows = [[d["day"], d["date"], d["receipts"], d["addresses"], f"{d['reward']:.6f}"] for d in g["days"]]
    miner_logger.phase_table(MinerPhase.STATS, "Receipts by Day", ["Day", "Date", "Receipts", "Addrs", "Reward"],
                             rows, caption=f"{g['start_date']} → {g['end_date']}")
    miner_logger.phase_panel(MinerPhase.STATS, "Totals", [
        ("receipts", g["grand_total"]["receipts"]),
        ("reward", f"{g['grand_total']['reward']:.6f}"),
        ("per hour (24h)", f"{snap['rate']['per_hour_24h']:.2f}"),
        ("per hour (1h)", f"{snap['rate']['per_hour_1h']:.2f}"),
        ("active failures", snap["failures"]["total"]),
    ])
    return 0


def _cmd_export(c: Coordinator, args: argparse.Namespace) -> int:
    payload: Dict[str, Any] = {"challenges": c.export_valid_challenges()}
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        logger.info(f"Exported {len(payload['challenges'])} challenges to {args.output}")
    else:
        print(json.dumps(payload, indent=2))
    return 0


def _cmd_seed(c: Coordinator, args: argparse.Namespace) -> int:
    source: Any = args.source
    if not source.startswith(("http://", "https://")):
        try:
            data = json.loads(Path(source).read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"✗ cannot read seed file {source}: {e}")
            return 1
        source = data.get("challenges", []) if isinstance(data, dict) else data
        if not isinstance(source, list):
            logger.error(f"✗ seed file {args.source} holds no challenge list")
            return 1
    result = c.seed_challenges(source)
    if result.error:
        logger.error(result.error)
        return 1
    logger.info(f"Imported {result.imported} challenges ({result.total_valid} valid)")
    return 0


def _cmd_sweep(c: Coordinator, args: argparse.Namespace) -> int:
    removed = c.sweep(args.days)
    logger.info(f"Removed {removed} ledger entries older than {args.days} days")
    return 0


def _cmd_config(c: Coordinator, args: argparse.Namespace) -> int:
    if args.config_command == "set":
        changes: Dict[str, Any] = {}
        if args.worker_threads is not None:
            changes["worker_threads"] = args.worker_threads
        if args.default_batch_size:
            changes["batch_size"] = None
        elif args.batch_size is not None:
            changes["batch_size"] = args.batch_size
        if args.grouping_mode is not None:
            changes["worker_grouping_mode"] = args.grouping_mode
        if args.workers_per_address is not None:
            changes["workers_per_address"] = args.workers_per_address
        cfg = c.mining_config.update(**changes)
    else:
        cfg = c.mining_config.load()
    items: List = list(cfg.to_dict().items()) + [("groupCount", cfg.group_count())]
    miner_logger.phase_panel(MinerPhase.INITIALIZATION, "Mining Config", items)
    return 0


_SYNC = {
    "best": _cmd_best,
    "history": _cmd_history,
    "pool-status": _cmd_pool_status,
    "stats": _cmd_stats,
    "export": _cmd_export,
    "seed": _cmd_seed,
    "sweep": _cmd_sweep,
    "config": _cmd_config,
}
_ASYNC = {
    "retry": _cmd_retry,
    "pool-prefetch": _cmd_pool_prefetch,
}

# ─────────────────────────── main ────────────────────────


def run(argv: Optional[Iterable[str]] = None) -> int:
    args = _parse_args(argv)
    setup_logging(args.log_level)

    try:
        if args.profile:
            profile = load_profile(args.profile)
        else:
            profile = Profile(id=DEFAULT_PROJECT_ID, name=DEFAULT_PROJECT_ID)
        coordinator = Coordinator.build(profile, base_dir=args.home)
        logger.debug(f"project={profile.id} api={profile.api_base_url}")

        if args.command in _ASYNC:
            return asyncio.run(_ASYNC[args.command](coordinator, args))
        return _SYNC[args.command](coordinator, args)
    except CourierError as e:
        logger.error(f"✗ {e}")
        return 1


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":  # pragma: no cover
    main()
