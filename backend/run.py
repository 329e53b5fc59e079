#!/usr/bin/env python3
# backend/run.py
"""
Development server runner.

Usage:
    python run.py [--host 0.0.0.0] [--port 8000] [--no-reload]
"""
import argparse
import os
from pathlib import Path

import uvicorn

from app.core.config import settings

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the ClassBook API locally")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--no-reload", action="store_true")
    args = parser.parse_args()

    os.chdir(Path(__file__).parent)

    uvicorn.run(
        "app.main:app",
        host=args.host,
        port=args.port,
        reload=not args.no_reload,
        log_level=settings.log_level.lower(),
    )
