import asyncio
import pytest
from moto import mock_aws
from infra.errors import AlreadyExistsError, NotFoundError, ValidationError
from infra.local import LocalFileStorage
from infra.memory import InMemoryFileStorage
from infra.s3 import S3FileStorage

@pytest.fixture(params=["local", "s3", "memory"])
def storage(request, tmp_path):
    if request.param == "local":
        yield LocalFileStorage(tmp_path / "data")
    elif request.param == "s3":
        with mock_aws():
            yield S3FileStorage.create(
                bucket="test-bucket",
                access_key="testing",
                secret_key="testing"
            )
    else:
        yield InMemoryFileStorage()

@pytest.mark.asyncio
async def test_write_without_overwrite(storage):
    await storage.write("a/b.txt", b"hello", overwrite=False)

    with pytest.raises(AlreadyExistsError):
        await storage.write("a/b.txt", b"world", overwrite=False)
    assert await storage.read("a/b.txt") == b"hello"

    await storage.write("a/b.txt", b"world", overwrite=True)
    assert await storage.read("a/b.txt") == b"world"

@pytest.mark.asyncio
async def test_upload_is_write_without_overwrite(storage):
    await storage.upload("up.bin", b"\x00\x01")
    with pytest.raises(AlreadyExistsError):
        await storage.upload("up.bin", b"\x02")
    assert await storage.read("up.bin") == b"\x00\x01"

@pytest.mark.asyncio
async def test_write_creates_parent_hierarchy(storage):
    await storage.write("deep/nested/dir/file.txt", b"x")
    assert await storage.read("deep/nested/dir/file.txt") == b"x"

@pytest.mark.asyncio
async def test_empty_content_round_trips(storage):
    await storage.write("empty.txt", b"")
    assert await storage.read("empty.txt") == b""

@pytest.mark.asyncio
async def test_delete_then_read(storage):
    await storage.write("gone.txt", b"bye")
    await storage.delete("gone.txt")

    with pytest.raises(NotFoundError):
        await storage.read("gone.txt")
    with pytest.raises(NotFoundError):
        await storage.delete("gone.txt")

@pytest.mark.asyncio
async def test_read_and_delete_missing(storage):
    with pytest.raises(NotFoundError):
        await storage.read("never-written.txt")
    with pytest.raises(NotFoundError):
        await storage.delete("never-written.txt")

@pytest.mark.asyncio
async def test_list_returns_each_path_once(storage):
    paths = ["docs/z.txt", "docs/a.txt", "docs/sub/m.txt", "other/x.txt", "docsy.txt"]
    for path in paths:
        await storage.write(path, b"data")
    # rewriting must not produce duplicates
    await storage.write("docs/a.txt", b"again", overwrite=True)

    listed = await storage.list("docs")
    assert len(listed) == len(set(listed))
    assert set(listed) == {"docs/z.txt", "docs/a.txt", "docs/sub/m.txt"}

    everything = await storage.list(".")
    assert sorted(everything) == sorted(paths)
    assert sorted(await storage.list("")) == sorted(paths)

@pytest.mark.asyncio
async def test_list_unknown_prefix_is_empty(storage):
    await storage.write("a.txt", b"1")
    assert await storage.list("missing") == []

@pytest.mark.asyncio
async def test_paths_are_normalized(storage):
    await storage.write("/lead/slash.txt", b"1")
    assert await storage.read("lead/slash.txt") == b"1"
    assert await storage.read("./lead/slash.txt") == b"1"

@pytest.mark.asyncio
async def test_empty_path_rejected(storage):
    with pytest.raises(ValidationError):
        await storage.write("", b"x")
    with pytest.raises(ValidationError):
        await storage.read("/")

@pytest.mark.asyncio
async def test_concurrent_writes_to_distinct_paths(storage):
    await asyncio.gather(*(storage.write(f"many/{i}.txt", str(i).encode()) for i in range(10)))
    assert sorted(await storage.list("many")) == sorted(f"many/{i}.txt" for i in range(10))
