import csv

from analyze_results import summarize_file
from peru_prices.cli import main

BASE = """
out_path: {out_path}
spiders: []
"""


def write_config(tmp_path, out_path):
    config_dir = tmp_path / "configuration"
    config_dir.mkdir()
    (config_dir / "base.yaml").write_text(BASE.format(out_path=out_path), encoding="utf-8")
    (config_dir / "local.yaml").write_text("", encoding="utf-8")
    return config_dir


def test_main_runs_with_no_spiders(tmp_path):
    config_dir = write_config(tmp_path, tmp_path / "data")
    assert main(["--config-dir", str(config_dir), "--environment", "local"]) == 0


def test_main_succeeds_when_out_path_cannot_be_created(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    config_dir = write_config(tmp_path, blocker / "data")
    assert main(["--config-dir", str(config_dir), "--environment", "local"]) == 0


def test_main_fails_when_out_path_is_a_file(tmp_path):
    out_path = tmp_path / "data"
    out_path.write_text("")
    config_dir = write_config(tmp_path, out_path)
    assert main(["--config-dir", str(config_dir), "--environment", "local"]) == 1


def test_main_fails_on_missing_configuration(tmp_path):
    assert main(["--config-dir", str(tmp_path), "--environment", "local"]) == 1


def test_summarize_file(tmp_path):
    path = tmp_path / "metro_20240101.csv"
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(["id", "brand", "uri", "name", "price", "category"])
        writer.writerow(["1", "Gloria", "", "Leche", "4.2", "lacteos"])
        writer.writerow(["2", "Gloria", "", "Yogurt", "5.8", "lacteos"])
        writer.writerow(["3", "", "", "Arroz", "", "abarrotes"])

    summary = summarize_file(path)
    assert summary["records"] == 3
    assert summary["duplicated_ids"] == 0
    assert summary["priced"] == 2
    assert summary["min_price"] == 4.2
    assert summary["max_price"] == 5.8
    assert summary["brands"].most_common(1) == [("Gloria", 2)]
    assert summary["categories"]["lacteos"] == 2
