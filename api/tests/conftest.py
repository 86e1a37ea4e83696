import os

# Applied before the app module reads its settings.
os.environ.setdefault("IH_OTEL_ENABLED", "false")
os.environ.setdefault("IH_REPOSITORY_BACKEND", "memory")
os.environ.setdefault("IH_REALTIME_PING_INTERVAL_SECONDS", "0")
