import json
import os

import pytest

from vision_worker.adapters import file_adapter
from vision_worker.adapters.file_adapter import FileResultStore
from vision_worker.errors import StorageFlushError
from vision_worker.models import AnalysisResult


def result(i, content=None):
    return AnalysisResult(frame=f"frame_{i:04d}.jpg", content=content or f"frame {i}")


def read_file(store):
    with open(store.results_path, encoding="utf-8") as f:
        return json.load(f)


def test_batches_flush_at_batch_size(tmp_path):
    store = FileResultStore(str(tmp_path), "clip", batch_size=10)

    for i in range(1, 10):
        store.add(result(i))
    assert not os.path.exists(store.results_path)
    assert store.pending == 9

    store.add(result(10))
    assert len(read_file(store)) == 10
    assert store.pending == 0

    for i in range(11, 21):
        store.add(result(i))
    assert len(read_file(store)) == 20

    for i in range(21, 24):
        store.add(result(i))
    assert len(read_file(store)) == 20
    assert store.pending == 3

    store.flush()
    entries = read_file(store)
    assert len(entries) == 23
    assert len({e["frame"] for e in entries}) == 23


def test_file_format(tmp_path):
    store = FileResultStore(str(tmp_path), "clip")
    store.add(result(1, "a red car"))
    store.flush()

    assert store.results_path == os.path.join(str(tmp_path), "clip", "analysis_results.json")
    assert read_file(store) == [{"frame": "frame_0001.jpg", "content": "a red car"}]


def test_flush_merges_with_existing_results(tmp_path):
    store = FileResultStore(str(tmp_path), "clip", batch_size=100)
    for i in range(1, 6):
        store.add(result(i))
    store.flush()

    second = FileResultStore(str(tmp_path), "clip", batch_size=100)
    for i in range(6, 9):
        second.add(result(i))
    second.flush()

    frames = [e["frame"] for e in read_file(second)]
    assert frames == [f"frame_{i:04d}.jpg" for i in range(1, 9)]


def test_reflushed_frame_replaces_existing_entry(tmp_path):
    store = FileResultStore(str(tmp_path), "clip", batch_size=100)
    store.add(result(1, "first"))
    store.add(result(2, "second"))
    store.flush()

    store.add(result(1, "updated"))
    store.flush()

    assert read_file(store) == [
        {"frame": "frame_0001.jpg", "content": "updated"},
        {"frame": "frame_0002.jpg", "content": "second"},
    ]


def test_empty_flush_is_a_noop(tmp_path):
    store = FileResultStore(str(tmp_path), "clip")
    store.flush()
    assert not os.path.exists(store.results_path)


@pytest.mark.parametrize("contents", ["{not json", '{"frame": "x"}', ""])
def test_unreadable_existing_file_counts_as_empty(tmp_path, contents):
    store = FileResultStore(str(tmp_path), "clip")
    os.makedirs(os.path.dirname(store.results_path))
    with open(store.results_path, "w") as f:
        f.write(contents)

    assert store.load() == []

    store.add(result(1))
    store.flush()
    assert len(read_file(store)) == 1


def test_failed_write_keeps_buffer_and_existing_file(tmp_path, monkeypatch):
    store = FileResultStore(str(tmp_path), "clip", batch_size=100)
    store.add(result(1))
    store.flush()

    store.add(result(2))

    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(file_adapter.os, "replace", broken_replace)

    with pytest.raises(StorageFlushError) as excinfo:
        store.flush()

    assert excinfo.value.pending == 1
    assert store.pending == 1
    assert len(read_file(store)) == 1
    leftovers = [n for n in os.listdir(os.path.dirname(store.results_path)) if n.endswith(".tmp")]
    assert leftovers == []

    monkeypatch.undo()
    store.flush()
    assert len(read_file(store)) == 2
    assert store.pending == 0


def test_add_propagates_flush_failure(tmp_path, monkeypatch):
    store = FileResultStore(str(tmp_path), "clip", batch_size=2)

    def broken_replace(src, dst):
        raise OSError("nope")

    monkeypatch.setattr(file_adapter.os, "replace", broken_replace)

    store.add(result(1))
    with pytest.raises(StorageFlushError):
        store.add(result(2))

    assert store.pending == 2


def test_close_flushes(tmp_path):
    with FileResultStore(str(tmp_path), "clip") as store:
        store.add(result(1))

    assert len(read_file(store)) == 1


def test_invalid_batch_size(tmp_path):
    with pytest.raises(ValueError):
        FileResultStore(str(tmp_path), "clip", batch_size=0)


def test_add_many_keeps_results_buffered_when_flush_fails(tmp_path, monkeypatch):
    store = FileResultStore(str(tmp_path), "clip", batch_size=2)

    def broken_replace(src, dst):
        raise OSError("read-only file system")

    monkeypatch.setattr(file_adapter.os, "replace", broken_replace)

    with pytest.raises(StorageFlushError) as excinfo:
        store.add_many([result(1), result(2), result(3)])

    assert excinfo.value.pending == 3
    assert store.pending == 3

    monkeypatch.undo()
    store.flush()
    assert len(read_file(store)) == 3


def test_add_many_stores_every_result(tmp_path):
    store = FileResultStore(str(tmp_path), "clip", batch_size=2)

    assert store.add_many([result(i) for i in range(1, 6)]) == 5
    store.flush()

    assert len(read_file(store)) == 5
