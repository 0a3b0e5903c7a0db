# config/__init__.py
