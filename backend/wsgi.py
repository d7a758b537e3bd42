# backend/wsgi.py
from stockbill import create_app

app = create_app()
