#!/usr/bin/env python3
"""Start the executor HTTP service and scheduler.

Usage:
  RE_GITHUB_TOKEN=... python tools/serve.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import uvicorn

CORE_DIR = Path(__file__).resolve().parents[1] / "runtime" / "core"
sys.path.insert(0, str(CORE_DIR))

from config.settings import load_runtime_config  # noqa: E402


def main() -> int:
    os.environ.setdefault("RE_RUNTIME_CONFIG", str(CORE_DIR / "config" / "runtime.yaml"))
    os.environ.setdefault("RE_LOGGING_CONFIG", str(CORE_DIR / "config" / "logging.yaml"))

    cfg = load_runtime_config(Path(os.environ["RE_RUNTIME_CONFIG"]))
    uvicorn.run(
        "api.main:app",
        host=cfg.service.host,
        port=cfg.service.port,
        log_level=os.getenv("RE_LOG_LEVEL", "info"),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
