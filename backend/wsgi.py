# backend/wsgi.py
from carpos import create_app

app = create_app()
