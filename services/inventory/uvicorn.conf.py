"""Runtime settings for the inventory service, read by the container entrypoint.

``uvicorn main:app --host $HOST --port $PORT --workers $UVICORN_WORKERS``
"""

import os

app = "main:app"
host = os.getenv("HOST", "0.0.0.0")
port = int(os.getenv("PORT", "9001"))
# Each worker opens its own SQLAlchemy pool; size DB connections accordingly
workers = int(os.getenv("UVICORN_WORKERS", str(max(2, (os.cpu_count() or 1)))))
loop = "uvloop"  # requires uvicorn[standard]
http = "h11"
log_level = os.getenv("LOG_LEVEL", "info")
