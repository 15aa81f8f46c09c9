# tests/test_config.py

import json
import logging

import pytest
import yaml

from config import SystemConfig
from utils.logging_config import log_operation, setup_logging


def test_defaults():
    config = SystemConfig()

    assert config.vector_index.backend == "sqlite"
    assert config.vector_index.dimension == 512
    assert config.duplicate_detection.threshold == 0.1
    assert config.duplicate_detection.neighbor_limit == 100
    assert config.recommendation.history_days == 30
    assert config.recommendation.min_duration_ms == 1000.0
    assert config.attribute_suggestion.threshold == 0.2
    assert config.validate() is config


def test_save_and_load(tmp_path):
    path = tmp_path / "config.yaml"
    config = SystemConfig(log_level="DEBUG")
    config.vector_index.backend = "faiss"
    config.duplicate_detection.threshold = 0.25
    config.recommendation.limit = 20
    config.attribute_suggestion.keyword_limit = 3

    config.save(str(path))
    loaded = SystemConfig.load(str(path))

    assert loaded == config


def test_partial_file_keeps_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({'duplicate_detection': {'threshold': 0.05}}))

    loaded = SystemConfig.load(str(path))

    assert loaded.duplicate_detection.threshold == 0.05
    assert loaded.duplicate_detection.neighbor_limit == 100
    assert loaded.vector_index.backend == "sqlite"


def test_missing_or_empty_file(tmp_path):
    assert SystemConfig.load(str(tmp_path / "absent.yaml")) == SystemConfig()

    empty = tmp_path / "empty.yaml"
    empty.write_text("")
    assert SystemConfig.load(str(empty)) == SystemConfig()


@pytest.mark.parametrize("section, values", [
    ('duplicate_detection', {'threshold': 0}),
    ('duplicate_detection', {'threshold': 1.5}),
    ('vector_index', {'backend': 'annoy'}),
    ('vector_index', {'dimension': 768}),
    ('similarity_search', {'default_results': 500}),
    ('recommendation', {'limit': 0}),
    ('attribute_suggestion', {'threshold': 2}),
    ('background', {'n_workers': 0}),
])
def test_invalid_values_rejected(tmp_path, section, values):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({section: values}))

    with pytest.raises(ValueError):
        SystemConfig.load(str(path))


def test_setup_logging_writes_structured_log(tmp_path):
    config = SystemConfig(log_dir=str(tmp_path / "logs"))
    root = setup_logging(config, console=False)
    setup_logging(config, console=False)

    engine_handlers = [h for h in root.handlers if getattr(h, '_engine_handler', False)]
    assert len(engine_handlers) == 2

    log_operation(logging.getLogger("tests"), "embed_image", owner_id="img-1")
    for handler in engine_handlers:
        handler.flush()

    lines = (tmp_path / "logs" / "engine_structured.json").read_text().splitlines()
    record = json.loads(lines[-1])
    assert record['logger'] == "tests"
    assert json.loads(record['message'])['owner_id'] == "img-1"

    for handler in engine_handlers:
        root.removeHandler(handler)
        handler.close()
