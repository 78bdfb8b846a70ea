"""Application entrypoint wiring for the panoramic sweep server.

Parses the command line, builds the controller from persisted state and serves
it with uvicorn. This module must not contain controller or SDR logic beyond
orchestration.
"""

import argparse
import logging
from typing import Optional, Sequence

import uvicorn

from panoramic_spectrum.config import SweepConfig
from panoramic_spectrum.persistence import STATE_PATH
from panoramic_spectrum.server.app import build_controller, create_app


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Panoramic spectrum sweep server")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--uri", default=SweepConfig.uri, help="Pluto URI")
    parser.add_argument("--state", default=STATE_PATH, help="Persisted state file")
    parser.add_argument("--band-plans", default="", help="Band plan JSON file")
    parser.add_argument("--export-dir", default=SweepConfig.export_dir, help="Directory for spectrum exports")
    parser.add_argument("--max-lag-ms", type=int, default=SweepConfig.max_allowed_lag_ms)
    parser.add_argument("--no-lag-filter", action="store_true")
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    cfg = SweepConfig(
        uri=args.uri,
        enable_lag_filter=not args.no_lag_filter,
        max_allowed_lag_ms=args.max_lag_ms,
        state_path=args.state,
        band_plan_path=args.band_plans,
        export_dir=args.export_dir,
    )
    app = create_app(build_controller(cfg), state_path=args.state)
    uvicorn.run(app, host=args.host, port=args.port, log_level=str(args.log_level).lower())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
