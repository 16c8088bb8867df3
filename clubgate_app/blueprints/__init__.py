# clubgate_app/blueprints/__init__.py
