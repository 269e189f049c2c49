import os

os.environ.setdefault("LEDGER_DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("LEDGER_TIMEZONE", "UTC")
