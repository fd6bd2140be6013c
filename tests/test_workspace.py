from pathlib import Path

from sitepanel.workspace import discover_site_config, find_site_configs


def _touch(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text('title = "site"\n', encoding="utf-8")
    return path


def test_single_config_is_discovered(tmp_path: Path) -> None:
    expected = _touch(tmp_path / "site" / "config.toml")

    assert discover_site_config(tmp_path) == expected.resolve()


def test_no_config_means_none(tmp_path: Path) -> None:
    (tmp_path / "content").mkdir()

    assert discover_site_config(tmp_path) is None


def test_several_configs_mean_none(tmp_path: Path) -> None:
    _touch(tmp_path / "config.toml")
    _touch(tmp_path / "docs" / "config.toml")

    assert len(find_site_configs(tmp_path)) == 2
    assert discover_site_config(tmp_path) is None


def test_hidden_and_vendored_directories_are_skipped(tmp_path: Path) -> None:
    expected = _touch(tmp_path / "config.toml")
    _touch(tmp_path / ".git" / "config.toml")
    _touch(tmp_path / "node_modules" / "pkg" / "config.toml")
    _touch(tmp_path / "target" / "config.toml")

    assert discover_site_config(tmp_path) == expected.resolve()


def test_custom_filename(tmp_path: Path) -> None:
    _touch(tmp_path / "config.toml")
    expected = _touch(tmp_path / "site" / "site.toml")

    assert discover_site_config(tmp_path, "site.toml") == expected.resolve()
