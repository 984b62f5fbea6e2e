from datetime import datetime, timedelta

import pytest
from flask import jsonify, request

from app import create_app
from config import TestConfig
from models import db
from security.engine import AbuseEngine
from security.rate_limit import EXTENSION_KEY, clear_all, limit, report_login, track_failures

CORRECT_PASSWORD = "correct-horse-battery"


class FakeClock:
    def __init__(self, start=datetime(2026, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def _register_routes(app):
    @app.post("/login")
    @limit("login")
    def login():
        data = request.get_json(silent=True) or {}
        if data.get("password") == CORRECT_PASSWORD:
            clear_all(request, "login")
            report_login(True, user_id=1)
            return jsonify(message="Login OK"), 200
        report_login(False, error_message="Invalid credentials")
        return jsonify(error="Invalid credentials"), 401

    @app.post("/register")
    @limit("register")
    def register():
        return jsonify(message="Registered successfully"), 201

    @app.post("/verify")
    @track_failures("emailVerification")
    def verify():
        data = request.get_json(silent=True) or {}
        if data.get("code") == "123456":
            return jsonify(message="Verified"), 200
        return jsonify(error="Invalid code"), 400

    @app.get("/ping")
    def ping():
        return jsonify(ok=True), 200


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def app(clock):
    app = create_app(TestConfig)
    app.extensions[EXTENSION_KEY] = AbuseEngine.from_config(app.config, clock=clock)
    _register_routes(app)

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield app
        db.session.remove()


@pytest.fixture
def engine(ctx):
    return ctx.extensions[EXTENSION_KEY]


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login_policy(engine):
    return engine.policy("login")
