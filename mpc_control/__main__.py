"""
Main entry point when running the mpc_control module with python -m.
"""

import argparse
import asyncio
import logging
import math
import sys

from .config import ACTUATION_LATENCY_SECONDS, MAX_STEERING_ANGLE_DEG, WS_HOST, WS_PORT
from .server import main, setup_logging

if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="MPC control server for the driving simulator"
    )
    parser.add_argument("--host", default=WS_HOST, help=f"Interface to listen on (default: {WS_HOST})")
    parser.add_argument("--port", type=int, default=WS_PORT, help=f"Port to listen on (default: {WS_PORT})")
    parser.add_argument(
        "--latency",
        type=float,
        default=ACTUATION_LATENCY_SECONDS,
        help=f"Actuation latency in seconds (default: {ACTUATION_LATENCY_SECONDS})",
    )
    parser.add_argument(
        "--max-steering-deg",
        type=float,
        default=MAX_STEERING_ANGLE_DEG,
        help=f"Steering angle mapped to +/-1, in degrees (default: {MAX_STEERING_ANGLE_DEG})",
    )
    parser.add_argument(
        "--record", action="store_true", help="Record every control cycle to results/run_*/cycles.csv"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable verbose logging with timestamps"
    )
    args = parser.parse_args()

    setup_logging(args.verbose)

    try:
        asyncio.run(
            main(
                host=args.host,
                port=args.port,
                latency_seconds=args.latency,
                max_steering_angle=math.radians(args.max_steering_deg),
                record=args.record,
            )
        )
    except OSError as e:
        logging.error(f"Failed to listen to port {args.port}: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logging.info("\nExiting...")
        sys.exit(0)
