import uuid
from datetime import datetime, timedelta, timezone

import pytest

from portfolio_storage.database.db import SessionLocal
from portfolio_storage.storage import (
    DatabaseChunkStore,
    LocalChunkStore,
    ObjectNotFound,
    RangeNotSatisfiable,
    ReadFailure,
    StoreUnavailable,
    StreamState,
    WriteFailure,
    WriteState,
)


def _store_object(store, chunks):
    object_id = uuid.uuid4()
    handle = store.open_write_session(object_id)
    for chunk in chunks:
        store.write_chunk(handle, chunk)
    store.commit(handle)
    return object_id


@pytest.mark.parametrize(
    "chunks",
    [
        [],
        [b"abcd"],
        [b"abcd", b"e"],
        [b"abcd", b"efgh", b"ijkl"],
    ],
)
def test_commit_then_read_reassembles_bytes(chunk_store, chunks):
    object_id = uuid.uuid4()
    handle = chunk_store.open_write_session(object_id)
    for chunk in chunks:
        chunk_store.write_chunk(handle, chunk)

    length = chunk_store.commit(handle)

    expected = b"".join(chunks)
    assert length == len(expected)
    assert handle.state is WriteState.committed
    with chunk_store.open_read_stream(object_id) as stream:
        assert b"".join(stream) == expected


def test_chunks_come_back_in_sequence_order(chunk_store):
    object_id = _store_object(chunk_store, [b"AAAA", b"BBBB", b"CC"])

    stream = chunk_store.open_read_stream(object_id)

    assert list(stream) == [b"AAAA", b"BBBB", b"CC"]
    assert stream.state is StreamState.completed


def test_uncommitted_object_is_not_readable(chunk_store):
    object_id = uuid.uuid4()
    handle = chunk_store.open_write_session(object_id)
    chunk_store.write_chunk(handle, b"abcd")

    assert chunk_store.exists(object_id) is False
    with pytest.raises(ObjectNotFound):
        chunk_store.open_read_stream(object_id)


def test_read_from_offset_with_limit(chunk_store):
    object_id = _store_object(chunk_store, [b"0123", b"4567", b"89"])

    assert b"".join(chunk_store.open_read_stream(object_id, 5)) == b"56789"
    assert b"".join(chunk_store.open_read_stream(object_id, 2, 4)) == b"2345"
    assert b"".join(chunk_store.open_read_stream(object_id, 10)) == b""


def test_offset_past_end_is_rejected(chunk_store):
    object_id = _store_object(chunk_store, [b"0123"])

    with pytest.raises(RangeNotSatisfiable):
        chunk_store.open_read_stream(object_id, 5)


def test_malformed_id_is_not_found(chunk_store):
    with pytest.raises(ObjectNotFound):
        chunk_store.open_read_stream("not-an-id")
    assert chunk_store.exists("not-an-id") is False


def test_oversized_chunk_fails_the_session(chunk_store):
    handle = chunk_store.open_write_session(uuid.uuid4())

    with pytest.raises(WriteFailure):
        chunk_store.write_chunk(handle, b"too long")

    assert handle.state is WriteState.failed
    with pytest.raises(WriteFailure):
        chunk_store.commit(handle)


def test_cannot_append_after_short_chunk(chunk_store):
    handle = chunk_store.open_write_session(uuid.uuid4())
    chunk_store.write_chunk(handle, b"ab")

    with pytest.raises(WriteFailure):
        chunk_store.write_chunk(handle, b"cd")
    assert handle.state is WriteState.failed


def test_abort_removes_written_chunks(chunk_store):
    object_id = uuid.uuid4()
    handle = chunk_store.open_write_session(object_id)
    chunk_store.write_chunk(handle, b"abcd")
    chunk_store.write_chunk(handle, b"efgh")

    chunk_store.abort(handle)

    assert handle.state is WriteState.aborted
    assert chunk_store.list_object_ids() == []


def test_delete_all_is_idempotent(chunk_store):
    object_id = _store_object(chunk_store, [b"abcd", b"ef"])

    chunk_store.delete_all(object_id)
    chunk_store.delete_all(object_id)
    chunk_store.delete_all(uuid.uuid4())

    assert chunk_store.exists(object_id) is False
    with pytest.raises(ObjectNotFound):
        chunk_store.open_read_stream(object_id)


def test_missing_chunk_mid_stream_fails_loudly(chunk_store):
    object_id = _store_object(chunk_store, [b"abcd", b"efgh"])
    stream = chunk_store.open_read_stream(object_id)
    chunk_store.delete_all(object_id)

    with pytest.raises(ReadFailure):
        next(stream)

    assert stream.state is StreamState.failed
    assert list(stream) == []


def test_closing_early_cancels_stream(chunk_store):
    object_id = _store_object(chunk_store, [b"abcd", b"efgh"])
    stream = chunk_store.open_read_stream(object_id)

    assert next(stream) == b"abcd"
    stream.close()

    assert stream.state is StreamState.cancelled
    assert stream.bytes_read == 4
    assert list(stream) == []


def test_list_object_ids_respects_cutoff(chunk_store):
    committed = _store_object(chunk_store, [b"abcd"])
    pending = uuid.uuid4()
    handle = chunk_store.open_write_session(pending)
    chunk_store.write_chunk(handle, b"wxyz")

    now = datetime.now(timezone.utc)
    assert set(chunk_store.list_object_ids()) == {committed, pending}
    assert set(chunk_store.list_object_ids(older_than=now + timedelta(hours=1))) == {committed, pending}
    assert chunk_store.list_object_ids(older_than=now - timedelta(hours=1)) == []


def test_local_store_unavailable_when_root_is_a_file(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    store = LocalChunkStore(blocker / "root", 4)

    with pytest.raises(StoreUnavailable):
        store.open_write_session(uuid.uuid4())


def test_database_store_unavailable_when_unreachable(tmp_path):
    from sqlalchemy import create_engine
    from sqlalchemy.orm import sessionmaker

    engine = create_engine(f"sqlite:///{tmp_path / 'missing' / 'nowhere.db'}")
    store = DatabaseChunkStore(sessionmaker(bind=engine), 4)

    with pytest.raises(StoreUnavailable):
        store.open_write_session(uuid.uuid4())


def test_database_chunks_are_separate_rows():
    from sqlalchemy import func, select

    from portfolio_storage.database.models import ObjectChunk

    store = DatabaseChunkStore(SessionLocal, 4)
    object_id = _store_object(store, [b"abcd", b"efgh", b"i"])

    with SessionLocal() as db:
        count = db.execute(
            select(func.count()).select_from(ObjectChunk).where(ObjectChunk.object_id == object_id)
        ).scalar_one()
    assert count == 3


def test_local_store_shards_committed_objects(tmp_path):
    store = LocalChunkStore(tmp_path, 4)
    object_id = _store_object(store, [b"abcd"])

    committed_dir = tmp_path / object_id.hex[:2] / object_id.hex
    assert (committed_dir / "manifest.json").exists()
    assert (committed_dir / "00000000.chunk").read_bytes() == b"abcd"
    assert not (tmp_path / ".pending" / object_id.hex).exists()


def test_read_stream_requires_a_chunk_reader():
    from portfolio_storage.storage import ManifestInfo, ReadStream

    class IncompleteStream(ReadStream):
        pass

    manifest = ManifestInfo(length=4, chunk_count=1, chunk_size=4)
    with pytest.raises(TypeError):
        IncompleteStream(uuid.uuid4(), manifest, 0, 4)
