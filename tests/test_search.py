from concurrent.futures import TimeoutError as FutureTimeoutError
from unittest.mock import MagicMock

import psycopg
import pytest

from vision_worker.adapters.search import SearchEngine, _escape_like
from vision_worker.errors import (
    EmbeddingError,
    EmbeddingQueueFullError,
    SearchError,
    SearchNoFramesError,
    SearchNoMatchError,
)


@pytest.fixture
def embeddings():
    service = MagicMock()
    service.embed.return_value = (0.5, 0.5)
    return service


def test_similarity_search_without_frames(mock_pool, embeddings):
    mock_pool.cur.fetchone.return_value = (0,)

    with pytest.raises(SearchNoFramesError) as excinfo:
        SearchEngine(mock_pool, embeddings).similarity_search("clip", "dog")

    assert str(excinfo.value) == "No frames found for video 'clip'. Run ingestion for 'clip' first."
    embeddings.embed.assert_not_called()


def test_text_search_without_frames(mock_pool):
    mock_pool.cur.fetchone.return_value = (0,)

    with pytest.raises(SearchNoFramesError):
        SearchEngine(mock_pool).text_search("clip", "dog")


def test_similarity_search_returns_scored_frames(mock_pool, embeddings):
    mock_pool.cur.fetchone.return_value = (3,)
    mock_pool.cur.fetchall.return_value = [
        (2, "frame_0002.jpg", "a dog running", 0.91, 15),
        (1, "frame_0001.jpg", "an empty park", 0.42, 0),
    ]

    results = SearchEngine(mock_pool, embeddings).similarity_search("clip", "dog", limit=2)

    assert [r.frame_number for r in results] == [2, 1]
    assert results[0].similarity == pytest.approx(0.91)
    assert results[0].timestamp_seconds == 15
    sql, params = mock_pool.cur.execute.call_args.args
    assert "<=>" in sql
    assert params == {"q": [0.5, 0.5], "video": "clip", "limit": 2}


def test_text_search_escapes_wildcards(mock_pool):
    mock_pool.cur.fetchone.return_value = (1,)
    mock_pool.cur.fetchall.return_value = [(4, "frame_0004.jpg", "100% sure", 45)]

    results = SearchEngine(mock_pool).text_search("clip", "100%_")

    sql, params = mock_pool.cur.execute.call_args.args
    assert "ILIKE" in sql
    assert params == ("clip", "%100\\%\\_%", 5)
    assert results[0].similarity is None
    assert results[0].description == "100% sure"


def test_text_search_without_matches(mock_pool):
    mock_pool.cur.fetchone.return_value = (5,)
    mock_pool.cur.fetchall.return_value = []

    with pytest.raises(SearchNoMatchError) as excinfo:
        SearchEngine(mock_pool).text_search("clip", "giraffe")

    assert excinfo.value.query == "giraffe"


def test_similarity_search_needs_embeddings(mock_pool):
    with pytest.raises(SearchError):
        SearchEngine(mock_pool).similarity_search("clip", "dog")


def test_database_errors_become_search_errors(mock_pool, embeddings):
    mock_pool.cur.fetchone.return_value = (1,)
    mock_pool.cur.fetchall.side_effect = psycopg.OperationalError("gone")

    with pytest.raises(SearchError):
        SearchEngine(mock_pool, embeddings).similarity_search("clip", "dog")


def test_search_falls_back_to_text_when_nothing_is_embedded(mock_pool, embeddings):
    mock_pool.cur.fetchone.return_value = (2,)
    mock_pool.cur.fetchall.side_effect = [[], [(1, "frame_0001.jpg", "a dog", 0)]]

    results = SearchEngine(mock_pool, embeddings).search("clip", "dog")

    assert [r.frame_number for r in results] == [1]
    assert results[0].similarity is None


def test_search_falls_back_when_embedding_fails(mock_pool, embeddings):
    embeddings.embed.side_effect = RuntimeError("embedding queue is full")
    mock_pool.cur.fetchone.return_value = (2,)
    mock_pool.cur.fetchall.return_value = [(1, "frame_0001.jpg", "a dog", 0)]

    results = SearchEngine(mock_pool, embeddings).search("clip", "dog")

    assert len(results) == 1


def test_search_does_not_hide_missing_frames(mock_pool, embeddings):
    mock_pool.cur.fetchone.return_value = (0,)

    with pytest.raises(SearchNoFramesError):
        SearchEngine(mock_pool, embeddings).search("clip", "dog")


def test_escape_like():
    assert _escape_like("a_b%c\\d") == "a\\_b\\%c\\\\d"


def test_similarity_search_without_embedded_analyses(mock_pool, embeddings):
    mock_pool.cur.fetchone.return_value = (4,)
    mock_pool.cur.fetchall.return_value = []

    with pytest.raises(SearchNoMatchError):
        SearchEngine(mock_pool, embeddings).similarity_search("clip", "dog")


@pytest.mark.parametrize("error", [
    EmbeddingQueueFullError("embedding queue is full, try again later"),
    EmbeddingError("invalid embedding"),
    FutureTimeoutError(),
])
def test_query_embedding_failures_become_search_errors(mock_pool, embeddings, error):
    embeddings.embed.side_effect = error
    mock_pool.cur.fetchone.return_value = (4,)

    with pytest.raises(SearchError, match="failed to generate query embedding") as excinfo:
        SearchEngine(mock_pool, embeddings).similarity_search("clip", "dog")

    assert excinfo.value.__cause__ is error
    mock_pool.cur.fetchall.assert_not_called()
