# clubgate_app/wsgi.py
# Webhook endpoints only, for running under gunicorn (the bot runs from app.py):
#   gunicorn "clubgate_app.wsgi:app"
from . import create_app

app = create_app()
