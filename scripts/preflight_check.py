#!/usr/bin/env python3
import sys
import os

print("Running preflight import check...")
try:
    # Harmless defaults so settings load without a full environment
    os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
    os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

    import tuckshop.main
    print("Import tuckshop.main: OK")

    import tuckshop.queue.jobs
    print("Import tuckshop.queue.jobs: OK")

    from tuckshop.store.db import init_schema, make_engine
    init_schema(make_engine(os.environ["DATABASE_URL"]))
    print("Schema create: OK")

    print("Preflight check passed.")
    sys.exit(0)
except Exception as e:
    print(f"Preflight check FAILED: {e}")
    import traceback
    traceback.print_exc()
    sys.exit(1)
