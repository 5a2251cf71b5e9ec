# backend/wsgi.py
from printdesk import create_app

app = create_app()
