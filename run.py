#!/usr/bin/env python3
"""Run LoopRunner: HTTP API for loop route generation (http://localhost:8000)."""
import os
import sys
from pathlib import Path

# Run from project root so loop_builder and backend import
project_root = Path(__file__).resolve().parent
sys.path.insert(0, str(project_root))
os.chdir(project_root)

import uvicorn

if __name__ == "__main__":
    uvicorn.run("backend.Server:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
