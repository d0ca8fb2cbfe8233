# backend/wsgi.py
from checkrto import create_app

app = create_app()
