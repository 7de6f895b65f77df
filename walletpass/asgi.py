"""
ASGI entrypoint.

Run: uvicorn walletpass.asgi:app --host 0.0.0.0 --port 3000
"""
from walletpass.main import create_app

app = create_app()
