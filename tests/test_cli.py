# tests/test_cli.py

import json
import logging

import pytest

from cli import main_cli
from config import SystemConfig
from core import codec
from core.vector_index import SqliteVectorIndex
from conftest import unit


@pytest.fixture
def config_path(tmp_path):
    config = SystemConfig(log_dir=str(tmp_path / "logs"))
    config.vector_index.database_path = str(tmp_path / "data" / "embeddings.db")
    path = tmp_path / "config.yaml"
    config.save(str(path))

    with SqliteVectorIndex(db_path=config.vector_index.database_path) as index:
        index.upsert("a", unit(0))
        index.upsert("b", unit(0) + 0.05 * unit(1))
        index.upsert("c", unit(2))

    yield str(path)

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, '_engine_handler', False):
            root.removeHandler(handler)
            handler.close()


def test_status(config_path, capsys):
    assert main_cli(['-c', config_path, 'status']) == 0

    out = capsys.readouterr().out
    assert "Image embeddings: 3" in out
    assert "Label embeddings: 0" in out


def test_similar(config_path, tmp_path, capsys):
    output = tmp_path / "similar.json"

    assert main_cli(['-c', config_path, 'similar', 'a', '-k', '2', '-o', str(output)]) == 0

    results = json.loads(output.read_text())
    assert [r['owner_id'] for r in results] == ["b", "c"]
    assert results[0]['score'] > results[1]['score']


def test_similar_unknown_image(config_path, capsys):
    assert main_cli(['-c', config_path, 'similar', 'zzz']) == 1
    assert "no embedding" in capsys.readouterr().err


def test_similar_limit_out_of_range(config_path):
    assert main_cli(['-c', config_path, 'similar', 'a', '-k', '0']) == 2


def test_duplicates_report(config_path, tmp_path):
    output = tmp_path / "duplicates.json"

    assert main_cli(['-c', config_path, 'duplicates', '-t', '0.1', '-o', str(output)]) == 0

    report = json.loads(output.read_text())
    assert report['total_groups'] == 1
    assert report['groups'][0]['original_id'] == "a"
    assert [m['owner_id'] for m in report['groups'][0]['members']] == ["b"]


def test_duplicates_with_metadata_file(config_path, tmp_path):
    metadata = tmp_path / "metadata.json"
    metadata.write_text(json.dumps({
        "a": {"title": "copy", "created_at": "2024-06-01T10:00:00"},
        "b": {"title": "first upload", "created_at": "2023-01-01T10:00:00"},
    }))
    output = tmp_path / "duplicates.json"

    assert main_cli(['-c', config_path, 'duplicates', '-m', str(metadata),
                     '-o', str(output)]) == 0

    report = json.loads(output.read_text())
    assert report['groups'][0]['original_id'] == "b"


def test_duplicates_invalid_threshold(config_path, capsys):
    assert main_cli(['-c', config_path, 'duplicates', '-t', '1.5']) == 2
    assert "threshold" in capsys.readouterr().err


def test_sync(config_path, tmp_path, capsys):
    blobs = tmp_path / "blobs"
    blobs.mkdir()
    (blobs / "d.f32").write_bytes(codec.encode(unit(3)))
    (blobs / "broken.f32").write_bytes(b"\x00" * 10)

    assert main_cli(['-c', config_path, 'sync', str(blobs)]) == 0

    out = capsys.readouterr().out
    assert "Synced: 1" in out
    assert "Skipped: 1" in out
    config = SystemConfig.load(config_path)
    with SqliteVectorIndex(db_path=config.vector_index.database_path) as index:
        assert index.list_owner_ids() == ["a", "b", "c", "d"]


def test_no_command(capsys):
    assert main_cli([]) == 0
    assert "usage" in capsys.readouterr().out


def test_faiss_sync_survives_restart(tmp_path, capsys):
    config = SystemConfig(log_dir=str(tmp_path / "logs"))
    config.vector_index.backend = "faiss"
    config.vector_index.index_dir = str(tmp_path / "indexes")
    path = str(tmp_path / "faiss.yaml")
    config.save(path)
    blobs = tmp_path / "blobs"
    blobs.mkdir()
    (blobs / "img-1.f32").write_bytes(codec.encode(unit(0)))

    try:
        assert main_cli(['-c', path, 'sync', str(blobs)]) == 0
        capsys.readouterr()
        assert main_cli(['-c', path, 'status']) == 0
    finally:
        root = logging.getLogger()
        for handler in list(root.handlers):
            if getattr(handler, '_engine_handler', False):
                root.removeHandler(handler)
                handler.close()

    assert "Image embeddings: 1" in capsys.readouterr().out
