import pytest

from notevault.core.database import build_engine, build_session_maker
from notevault.services import FileMetadataStore, NewFileRecord


@pytest.fixture
async def sqlite_store(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'files.db'}")
    store = FileMetadataStore(engine, build_session_maker(engine))
    await store.init_schema()
    yield store
    await store.close()


def new_record(**overrides):
    values = dict(
        user_id="7",
        filename="lecture_1700000000000_ab12cd34.mp4",
        original_filename="lecture.mp4",
        file_path="users/7/videos/lecture_1700000000000_ab12cd34.mp4",
        file_type="video",
        file_size=104857600,
        mime_type="video/mp4",
        directory_path="/videos",
        thumbnail_key="users/7/videos/lecture_1700000000000_ab12cd34_thumb.jpg"
    )
    values.update(overrides)
    return NewFileRecord(**values)


async def test_create_assigns_id_and_timestamps(sqlite_store):
    record = await sqlite_store.create(new_record())

    assert record.id is not None
    assert record.created_at is not None
    assert record.updated_at is not None
    assert record.file_size == 104857600
    assert record.directory_path == "/videos"


async def test_init_schema_is_idempotent(sqlite_store):
    await sqlite_store.init_schema()

    assert await sqlite_store.create(new_record()) is not None


async def test_get(sqlite_store):
    created = await sqlite_store.create(new_record())

    fetched = await sqlite_store.get(created.id)

    assert fetched.file_path == created.file_path
    assert fetched.thumbnail_key == created.thumbnail_key
    assert await sqlite_store.get(created.id + 100) is None


async def test_get_by_path_is_scoped_to_owner(sqlite_store):
    created = await sqlite_store.create(new_record(thumbnail_key=None, file_size=5 * 1024 ** 3))

    fetched = await sqlite_store.get_by_path("7", created.file_path)

    assert fetched.id == created.id
    assert fetched.thumbnail_key is None
    assert fetched.file_size == 5 * 1024 ** 3
    assert await sqlite_store.get_by_path("8", created.file_path) is None
