# clubgate_app/bot/__init__.py
# Telegram UI: python-telegram-bot handlers over the reconciliation engine.
