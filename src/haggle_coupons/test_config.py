from pathlib import Path
from unittest.mock import patch

import pytest

from haggle_coupons.config import load_settings


@pytest.mark.unit_build
class TestLoadSettings:
    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co/")
        monkeypatch.setenv("SUPABASE_ANON_KEY", "anon")
        monkeypatch.setenv("HAGGLE_STATE_DIR", "/tmp/haggle-state")
        monkeypatch.setenv("HAGGLE_REQUEST_TIMEOUT", "2.5")

        with patch("haggle_coupons.config.load_dotenv"):
            settings = load_settings()

        assert settings.supabase_url == "https://example.supabase.co"
        assert settings.supabase_key == "anon"
        assert settings.state_dir == Path("/tmp/haggle-state")
        assert settings.request_timeout == 2.5

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
        monkeypatch.setenv("SUPABASE_ANON_KEY", "anon")
        monkeypatch.delenv("HAGGLE_STATE_DIR", raising=False)
        monkeypatch.delenv("HAGGLE_REQUEST_TIMEOUT", raising=False)

        with patch("haggle_coupons.config.load_dotenv"):
            settings = load_settings()

        assert settings.state_dir == Path(".haggle")
        assert settings.request_timeout == 10.0

    def test_missing_credentials_raise(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("SUPABASE_URL", raising=False)
        monkeypatch.setenv("SUPABASE_ANON_KEY", "anon")

        with patch("haggle_coupons.config.load_dotenv"):
            with pytest.raises(ValueError):
                load_settings()
