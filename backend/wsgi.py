# backend/wsgi.py
from cylinder_ledger import create_app

app = create_app()
