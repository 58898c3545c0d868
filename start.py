#!/usr/bin/env python3
"""Startup script for the autopilot API server."""

import os
import subprocess
import sys


def main():
    port = os.environ.get("PORT", "8080")

    print(f"Starting API server on port {port}...", flush=True)

    api_process = subprocess.Popen(
        [
            sys.executable, "-m", "uvicorn",
            "autopilot.api.main:app",
            "--host", "0.0.0.0",
            "--port", port,
        ],
        stdout=sys.stdout,
        stderr=sys.stderr,
    )

    try:
        status = api_process.wait()
        print(f"API server exited with code {status}", flush=True)
    except KeyboardInterrupt:
        print("Received interrupt, shutting down...", flush=True)
        api_process.terminate()
        api_process.wait()
    print("Shutdown complete", flush=True)


if __name__ == "__main__":
    main()
