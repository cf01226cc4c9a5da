from __future__ import annotations
import os
from importlib import import_module
from flask import Flask
from config import config_map
from extensions import db, migrate
from sqlalchemy import inspect

def _seed_from_config(app):
    if not app.config.get("SEED_TEST_DATA"):
        return
    with app.app_context():
        # таблиц может ещё не быть (alembic upgrade и т.п.)
        if not inspect(db.engine).has_table("environments"):
            return

        from models import Environment, EnvironmentInstance, InfraComponent  # локальный импорт, чтобы избежать циклов
        created = 0
        for env_cfg in app.config.get("DEMO_ENVIRONMENTS", []):
            if Environment.query.filter_by(name=env_cfg["name"]).first():
                continue
            env = Environment(name=env_cfg["name"])
            db.session.add(env)
            db.session.flush()
            for inst_name in env_cfg.get("instances", []):
                inst = EnvironmentInstance(environment_id=env.id, name=inst_name)
                db.session.add(inst)
                db.session.flush()
                for comp_name in env_cfg.get("components", []):
                    db.session.add(InfraComponent(env_instance_id=inst.id, name=f"{inst_name}/{comp_name}"))
            created += 1
        if created:
            db.session.commit()

def register_blueprints(app: Flask) -> None:
    # модуль с маршрутами core импортируем до взятия bp
    import_module("blueprints.core.routes")
    from blueprints.core import bp as core_bp

    # core без префикса → '/health' в корне
    app.register_blueprint(core_bp)

def create_app(config_name: str | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    cfg_name = config_name or os.getenv("FLASK_CONFIG", "default")
    app.config.from_object(config_map[cfg_name])
    # pytest всегда выставляет PYTEST_CURRENT_TEST: БД в памяти, чтобы тесты не делили состояние
    if os.environ.get("PYTEST_CURRENT_TEST"):
        app.config["SQLALCHEMY_DATABASE_URI"] = "sqlite:///:memory:"
        app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", {"connect_args": {"check_same_thread": False}})

    try:
        os.makedirs(app.instance_path, exist_ok=True)
    except OSError:
        pass
    db.init_app(app)
    migrate.init_app(app, db)
    register_blueprints(app)
    _seed_from_config(app)
    return app
