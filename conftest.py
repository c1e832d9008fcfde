"""
Root pytest configuration.
Switches the settings to TESTING before any application module is imported,
so the app binds to in-memory SQLite and never talks to Redis or SMTP.
"""
import os

os.environ["TESTING"] = "True"
os.environ["DEBUG"] = "False"
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("REFRESH_SECRET", "test-refresh")
