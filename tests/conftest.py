from pathlib import Path
import pandas as pd
import pytest
import yaml


ROOT = Path(__file__).parent.parent


def pytest_addoption(parser):
    parser.addoption(
        "--dataset-dir",
        default=str(ROOT / "datasets" / "textbooks"),
        help="Path to dataset directory containing config.yaml and data/reference/",
    )


@pytest.fixture(scope="session")
def dataset_dir(request):
    return Path(request.config.getoption("--dataset-dir")).resolve()


@pytest.fixture(scope="session")
def dataset_config(dataset_dir):
    config_path = dataset_dir / "config.yaml"
    with open(config_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)


@pytest.fixture(scope="session")
def state_codes_file(dataset_dir, dataset_config):
    path = dataset_dir / dataset_config["paths"]["state_codes"]
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)


@pytest.fixture(scope="session")
def review_scale_file(dataset_dir, dataset_config):
    path = dataset_dir / dataset_config["paths"]["review_scale"]
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)


@pytest.fixture(scope="session")
def cols(dataset_config):
    return dataset_config["columns"]


@pytest.fixture
def state_codes():
    return {"California": "CA", "New York": "NY", "Texas": "TX", "Florida": "FL"}


@pytest.fixture
def review_scale():
    return {"Poor": 1, "Fair": 2, "Good": 3, "Great": 4, "Excellent": 5}


@pytest.fixture
def raw_reviews():
    return pd.DataFrame([
        {"book": "R Basics", "review": "Excellent", "state": "California", "price": 29.95},
        {"book": "R Basics", "review": None, "state": "TX", "price": 29.95},
        {"book": "Fundamentals of R For Beginners", "review": "Good", "state": "NY", "price": 39.95},
        {"book": "Fundamentals of R For Beginners", "review": "Great", "state": "Florida", "price": 39.95},
        {"book": "Fundamentals of R For Beginners", "review": "Poor", "state": "New York", "price": 39.95},
        {"book": "Top 10 Mistakes R Beginners Make", "review": "Fair", "state": "Texas", "price": 15.99},
    ])


@pytest.fixture
def write_dataset(tmp_path):
    """Write a minimal dataset directory and return the path to its config."""

    def _write(rows, config_overrides=None, csv_text=None):
        (tmp_path / "ref").mkdir(exist_ok=True)
        with open(tmp_path / "ref" / "states.yaml", "w", encoding="utf-8") as f:
            yaml.safe_dump({"states": {"California": "CA", "Texas": "TX"}}, f)
        with open(tmp_path / "ref" / "scale.yaml", "w", encoding="utf-8") as f:
            yaml.safe_dump({"scores": {"Poor": 1, "Fair": 2, "Good": 3, "Great": 4, "Excellent": 5}}, f)

        csv_path = tmp_path / "reviews.csv"
        if csv_text is not None:
            csv_path.write_text(csv_text, encoding="utf-8")
        else:
            pd.DataFrame(rows).to_csv(csv_path, index=False)

        config = {
            "dataset": {"name": "Test Purchases"},
            "paths": {
                "input": "reviews.csv",
                "state_codes": "ref/states.yaml",
                "review_scale": "ref/scale.yaml",
                "output_prefix": "test_sales",
            },
            "columns": {"book": "book", "review": "review", "state": "state", "price": "price"},
            "scoring": {"high_review_threshold": 4},
        }
        for section, values in (config_overrides or {}).items():
            if values is None:
                config.pop(section, None)
            else:
                config[section] = values

        config_path = tmp_path / "config.yaml"
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(config, f)
        return config_path

    return _write
