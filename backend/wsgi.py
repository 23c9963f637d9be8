# backend/wsgi.py
from vault_ledger import create_app

app = create_app()
