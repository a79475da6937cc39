from pathlib import Path

import pytest

from peru_prices.cli import build_spiders
from peru_prices.configuration import env_overrides, get_configuration, merge
from peru_prices.errors import ConfigurationError
from peru_prices.spiders import InfiniteScrollingSpider, MultipageSpider

BASE = """
out_path: data
delay_milis: 500
crawlers_buffer_size: 2
spiders_buffer_size: 4
infinite_scrolling:
  scroll_delay_milis: 1000
  scroll_checks: 3
http:
  max_retries: 3
spiders:
  - name: metro
    kind: infinite_scrolling
    base_url: https://www.metro.pe
    selector: div.product-item
    subroutes: [abarrotes, lacteos]
  - name: plaza_vea
    kind: multipage
    base_url: https://www.plazavea.com.pe
    selector: div.Showcase__content
    delay_milis: 3000
    extractor: selectors
    fields:
      id: "@data-sku"
      name: .Showcase__name
    subroutes: [bebidas]
"""


@pytest.fixture
def config_dir(tmp_path):
    (tmp_path / "base.yaml").write_text(BASE, encoding="utf-8")
    (tmp_path / "local.yaml").write_text("infinite_scrolling:\n  scroll_checks: 2\n", encoding="utf-8")
    (tmp_path / "production.yaml").write_text("out_path: /srv/data\nheadless: true\n", encoding="utf-8")
    return tmp_path


def test_local_layer_overrides_base(config_dir):
    settings = get_configuration(config_dir, environ={})

    assert settings.out_path == Path("data")
    assert settings.infinite_scrolling.scroll_checks == 2
    assert settings.infinite_scrolling.scroll_delay_milis == 1000
    assert settings.infinite_scrolling.max_scrolls == 200
    assert [s.name for s in settings.spiders] == ["metro", "plaza_vea"]
    assert settings.spider("plaza_vea").fields == {"id": "@data-sku", "name": ".Showcase__name"}


def test_environment_is_read_from_app_environment(config_dir):
    settings = get_configuration(config_dir, environ={"APP_ENVIRONMENT": "Production"})
    assert settings.out_path == Path("/srv/data")
    assert settings.infinite_scrolling.scroll_checks == 3


def test_environment_variables_override_files(config_dir):
    settings = get_configuration(config_dir, environ={
        "APP_SPIDERS_BUFFER_SIZE": "8",
        "APP_INFINITE_SCROLLING__SCROLL_CHECKS": "5",
        "APP_HEADLESS": "false",
        "PATH": "/usr/bin",
    })
    assert settings.spiders_buffer_size == 8
    assert settings.infinite_scrolling.scroll_checks == 5
    assert settings.headless is False


def test_unknown_environment(config_dir):
    with pytest.raises(ConfigurationError):
        get_configuration(config_dir, environment="staging", environ={})


def test_missing_base_file(tmp_path):
    with pytest.raises(ConfigurationError):
        get_configuration(tmp_path, environ={})


@pytest.mark.parametrize("environ", [
    {"APP_CRAWLERS_BUFFER_SIZE": "0"},
    {"APP_SPIDERS_BUFFER_SIZE": "many"},
    {"APP_INFINITE_SCROLLING__SCROLL_CHECKS": "0"},
    {"APP_DELAY_MILIS": "-1"},
])
def test_invalid_values(config_dir, environ):
    with pytest.raises(ConfigurationError):
        get_configuration(config_dir, environ=environ)


def test_unknown_spider_kind(config_dir):
    (config_dir / "local.yaml").write_text(
        "spiders:\n  - {name: tottus, kind: api, base_url: x, selector: div, subroutes: []}\n",
        encoding="utf-8",
    )
    with pytest.raises(ConfigurationError):
        get_configuration(config_dir, environ={})


def test_duplicated_spider_names(config_dir):
    spider = "{name: metro, kind: multipage, base_url: x, selector: div, subroutes: []}"
    (config_dir / "local.yaml").write_text(f"spiders:\n  - {spider}\n  - {spider}\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        get_configuration(config_dir, environ={})


def test_env_overrides_nesting():
    assert env_overrides({"APP_HTTP__USER_AGENT": "bot/1.0", "APP_ENVIRONMENT": "local"}) == {
        "http": {"user_agent": "bot/1.0"}
    }


def test_merge_is_recursive():
    assert merge({"a": {"b": 1, "c": 2}, "d": 1}, {"a": {"c": 3}}) == {"a": {"b": 1, "c": 3}, "d": 1}


def test_build_spiders_from_settings(config_dir):
    settings = get_configuration(config_dir, environ={})
    metro, plaza_vea = build_spiders(settings)

    assert isinstance(metro, InfiniteScrollingSpider)
    assert metro.delay == 0.5
    assert metro.poller.scroll_checks == 2
    assert metro.wait_timeout == 5
    assert isinstance(plaza_vea, MultipageSpider)
    assert plaza_vea.delay == 3.0
    assert plaza_vea.subroutes == ("bebidas",)


def test_build_selected_spiders(config_dir):
    settings = get_configuration(config_dir, environ={})
    assert [s.name for s in build_spiders(settings, ["plaza_vea"])] == ["plaza_vea"]
    with pytest.raises(ConfigurationError):
        build_spiders(settings, ["tottus"])


def test_invalid_selector_is_a_configuration_error(config_dir):
    settings = get_configuration(config_dir, environ={})
    settings.spider("metro").selector = "div["
    with pytest.raises(ConfigurationError):
        build_spiders(settings)


def test_shipped_configuration_loads():
    config_dir = Path(__file__).resolve().parents[1] / "configuration"
    for environment in ("local", "production"):
        settings = get_configuration(config_dir, environment=environment, environ={})
        assert {s.name for s in settings.spiders} == {"metro", "wong", "plaza_vea"}


def test_unrelated_app_variables_are_ignored(config_dir):
    settings = get_configuration(config_dir, environ={
        "APP_NAME": "peru-prices",
        "APP_VERSION": "1.2.0",
        "APP_INFINITE_SCROLLING__SCROLL_SPEED": "3",
        "APP_SPIDERS__METRO": "off",
        "APP_SPIDERS_BUFFER_SIZE": "6",
    })
    assert settings.spiders_buffer_size == 6
    assert [s.name for s in settings.spiders] == ["metro", "plaza_vea"]


def test_env_overrides_keeps_only_settings():
    assert env_overrides({"APP_NAME": "x", "APP_HTTP__RETRIES": "2", "APP_HTTP__MAX_RETRIES": "2"}) == {
        "http": {"max_retries": 2}
    }


def test_unknown_keys_in_files_are_rejected(config_dir):
    (config_dir / "local.yaml").write_text("infinite_scrolling:\n  scroll_speed: 3\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        get_configuration(config_dir, environ={})
