"""
Environment variable configuration.

`create_app` is imported inside each test so the app is built after the
environment for that test is in place.
"""
import os


def test_default_configuration(monkeypatch, tmp_path):
    for key in ["APP_DB_PATH", "APP_UPLOADS_DIR", "FAMTREE_JWT_SECRET", "FAMTREE_JWT_EXPIRES_HOURS"]:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("APP_LOG_DIR", str(tmp_path / "logs"))

    from famtree import create_app
    app = create_app()

    assert app.config["DATABASE"].endswith(os.path.join("data", "famtree.sqlite"))
    assert app.config["UPLOADS_DIR"] == os.path.join(os.path.dirname(app.config["DATABASE"]), "uploads")
    assert app.config["JWT_SECRET"] == "dev-secret-change"
    assert app.config["JWT_EXPIRES_HOURS"] == 12
    assert app.config["MAX_CONTENT_LENGTH"] == 100 * 1024 * 1024
    assert os.path.isdir(os.path.join(app.config["UPLOADS_DIR"], "originals"))
    assert os.path.isdir(os.path.join(app.config["UPLOADS_DIR"], "thumbnails"))
    assert (tmp_path / "logs" / "app.log").exists()


def test_custom_db_path_absolute(monkeypatch, tmp_path):
    custom_path = tmp_path / "custom.sqlite"
    monkeypatch.setenv("APP_DB_PATH", str(custom_path))
    monkeypatch.delenv("APP_UPLOADS_DIR", raising=False)

    from famtree import create_app
    app = create_app({"TESTING": True})
    assert app.config["DATABASE"] == str(custom_path)
    # Uploads sit next to the database
    assert app.config["UPLOADS_DIR"] == str(tmp_path / "uploads")


def test_custom_uploads_and_secret(monkeypatch, tmp_path):
    monkeypatch.setenv("APP_DB_PATH", str(tmp_path / "db.sqlite"))
    monkeypatch.setenv("APP_UPLOADS_DIR", str(tmp_path / "files"))
    monkeypatch.setenv("FAMTREE_JWT_SECRET", "s3cret")
    monkeypatch.setenv("FAMTREE_JWT_EXPIRES_HOURS", "2")

    from famtree import create_app
    app = create_app({"TESTING": True})
    assert app.config["UPLOADS_DIR"] == str(tmp_path / "files")
    assert app.config["JWT_SECRET"] == "s3cret"
    assert app.config["JWT_EXPIRES_HOURS"] == 2
    assert (tmp_path / "files" / "originals").is_dir()


def test_test_config_overrides_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("APP_DB_PATH", str(tmp_path / "env.sqlite"))

    from famtree import create_app
    override = str(tmp_path / "override.sqlite")
    app = create_app({"TESTING": True, "DATABASE": override})
    assert app.config["DATABASE"] == override
    assert os.path.exists(override)


def test_env_vars_for_run_script(monkeypatch):
    monkeypatch.setenv("APP_BIND_HOST", "0.0.0.0")
    monkeypatch.setenv("APP_PORT", "8080")
    monkeypatch.setenv("APP_DEBUG", "1")

    host = os.environ.get("APP_BIND_HOST", "127.0.0.1")
    port = int(os.environ.get("APP_PORT", "3001"))
    debug = os.environ.get("APP_DEBUG", "0") == "1"

    assert host == "0.0.0.0"
    assert port == 8080
    assert debug is True
