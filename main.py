"""Divination Masters — dev launcher. Starts the API server in watch mode."""

import argparse
import os
import signal
import subprocess
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = os.getenv("PORT", "13013")


def main():
    parser = argparse.ArgumentParser(description="Divination Masters dev launcher")
    parser.add_argument("--personas", type=Path, default=None,
                        help="Persona catalogue JSON (default: bundled presets)")
    parser.add_argument("--proxy-url", default=None,
                        help="Self-hosted proxy base URL (overrides DIVINATION_PROXY_URL)")
    parser.add_argument("--log-level", default=None,
                        help="Logging level for the server (default: LOG_LEVEL or INFO)")
    args = parser.parse_args()

    # Build env for the server process so create_app() picks up the overrides
    env = os.environ.copy()
    if args.personas:
        env["PERSONAS_PATH"] = str(args.personas.resolve())
    if args.proxy_url:
        env["DIVINATION_PROXY_URL"] = args.proxy_url
    if args.log_level:
        env["LOG_LEVEL"] = args.log_level

    proc = subprocess.Popen(
        [sys.executable, "-m", "uvicorn", "divination.app:app", "--reload", "--host", HOST, "--port", PORT],
        cwd=ROOT, env=env,
    )

    def shutdown(*_):
        print("\nShutting down...")
        proc.terminate()
        proc.wait()
        sys.exit(0)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    print(f"Starting API server on http://localhost:{PORT} ...")
    proc.wait()


if __name__ == "__main__":
    main()
