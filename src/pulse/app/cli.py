from __future__ import annotations

import argparse
import sys

from pulse.app.runner import reset_profile, run


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="pulse-sim")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_run = sub.add_parser("run", help="Replay the configured visit against a stored profile")
    p_run.add_argument("--config", default="config/pulse.yaml")

    p_reset = sub.add_parser("reset", help="Clear stored identifiers for the profile")
    p_reset.add_argument("--config", default="config/pulse.yaml")

    args = parser.parse_args(argv)

    if args.cmd == "run":
        result = run(args.config)
        events = ",".join(f"{k}:{v}" for k, v in sorted(result.events.items()))
        # minimal stdout signal
        print(f"anon_id={result.anon_id} pages={result.pages} events={events}")
        return 0

    if args.cmd == "reset":
        reset_profile(args.config)
        print("identifiers cleared")
        return 0

    return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
