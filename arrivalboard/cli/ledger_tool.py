"""
Operator tool for the persisted playback ledger.

  arrivalboard-ledger --config /etc/arrivalboard/config.yaml list
  arrivalboard-ledger clear-entry ENTRY_ID
  arrivalboard-ledger clear
  arrivalboard-ledger sweep
"""
from __future__ import annotations

import argparse
import json
import sys
from zoneinfo import ZoneInfo

from arrivalboard.config import load_config
from arrivalboard.ledger import PlaybackLedger
from arrivalboard.main import DEFAULT_CONFIG, build_ledger


def _cmd_list(ledger: PlaybackLedger, as_json: bool) -> int:
    loaded = ledger.load()
    if loaded.is_corrupt:
        print(f"ledger is corrupt: {loaded.reason}", file=sys.stderr)
        return 2
    records = sorted(loaded.records, key=lambda r: r.played_at)
    if as_json:
        print(json.dumps([r.to_json() for r in records], ensure_ascii=False, indent=2))
        return 0
    if not records:
        print("(no records)")
        return 0
    for r in records:
        print(f"{r.played_at}  t-{r.min_played_threshold:<3d} arrival={r.arrival_time or '-':5s}  {r.entry_id}")
    return 0


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(prog="arrivalboard-ledger", description="Inspect or edit the playback ledger")
    ap.add_argument("--config", default=DEFAULT_CONFIG)
    sub = ap.add_subparsers(dest="cmd", required=True)

    p_list = sub.add_parser("list", help="show records")
    p_list.add_argument("--json", action="store_true")
    sub.add_parser("clear", help="remove every record")
    p_entry = sub.add_parser("clear-entry", help="remove the record for one entry")
    p_entry.add_argument("entry_id")
    sub.add_parser("sweep", help="prune records older than the configured max age")

    args = ap.parse_args(argv)
    settings = load_config(args.config)
    ledger = build_ledger(settings, ZoneInfo(settings.timezone))

    if args.cmd == "list":
        return _cmd_list(ledger, args.json)
    if args.cmd == "clear":
        ledger.clear()
        print("ledger cleared")
        return 0
    if args.cmd == "clear-entry":
        if ledger.clear_entry(args.entry_id):
            print(f"cleared {args.entry_id}")
            return 0
        print(f"no record for {args.entry_id}", file=sys.stderr)
        return 1
    if args.cmd == "sweep":
        print(f"pruned {ledger.cleanup()} record(s)")
        return 0
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
