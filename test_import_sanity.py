"""Import sanity tests.

These lightweight tests verify that the WSGI entrypoint and core modules
can be imported without errors, the minimum bar for a deploy.
"""

import os

import pytest

os.environ.setdefault("GOOGLE_MAPS_API_KEY", "fake-key-for-tests")


def test_app_module_imports():
    """The Flask app module must import without errors."""
    import app  # noqa: F401


def test_wsgi_app_object():
    """Gunicorn's 'app:app' entrypoint must resolve to a Flask instance."""
    from app import app as flask_app
    assert flask_app is not None
    assert hasattr(flask_app, "route"), "app object is not a Flask instance"


def test_location_service_imports():
    """Core symbols used by app.py must be importable."""
    from location_service import LocationService, create_location_service
    assert LocationService is not None
    assert create_location_service is not None


def test_pipeline_modules_import():
    from feature_estimator import DefaultFeatureEstimator
    from geo_provider import GeoProvider, GoogleMapsClient
    from pricing_engine import synthesize
    from quote_assembly import assemble_location_quote
    from service_area import ServiceAreaPolicy
    assert all([DefaultFeatureEstimator, GeoProvider, GoogleMapsClient,
                synthesize, assemble_location_quote, ServiceAreaPolicy])


def test_gunicorn_config_imports():
    import gunicorn_config
    assert gunicorn_config.bind.startswith("0.0.0.0:")
    assert gunicorn_config.workers >= 1


def test_gunicorn_post_fork_purges_cache(tmp_path, monkeypatch):
    from cache_store import SQLiteCache
    import gunicorn_config

    path = str(tmp_path / "geo.db")
    SQLiteCache(path).set("k", "v")
    monkeypatch.setenv("QUOTE_CACHE_PATH", path)
    gunicorn_config.post_fork(None, None)
    assert SQLiteCache(path).get("k") == "v"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
