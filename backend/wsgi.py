# backend/wsgi.py
from voucherpay import create_app

app = create_app()
