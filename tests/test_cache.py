import hashlib
import os
import time

from quire.cache import CompiledArtifactCache


def test_location_depends_on_path_only(tmp_path):
    cache = CompiledArtifactCache(tmp_path / "compiled")
    source = tmp_path / "a.sot.html"
    expected = hashlib.md5(str(source).encode()).hexdigest() + ".py"
    assert cache.location_for(source).name == expected
    assert cache.location_for(source) != cache.location_for(tmp_path / "b.sot.html")


def test_missing_artifact_is_expired(tmp_path):
    cache = CompiledArtifactCache(tmp_path / "compiled")
    source = tmp_path / "a.sot.html"
    source.write_text("x")
    assert cache.is_expired(source)


def test_disabled_cache_is_always_expired_and_never_writes(tmp_path):
    cache = CompiledArtifactCache(tmp_path / "compiled", enabled=False)
    source = tmp_path / "a.sot.html"
    source.write_text("x")
    assert cache.put(cache.location_for(source), "x = 1\n") is False
    assert cache.is_expired(source)
    assert not (tmp_path / "compiled").exists()


def test_without_auto_reload_existing_artifact_never_expires(tmp_path):
    cache = CompiledArtifactCache(tmp_path / "compiled", auto_reload=False)
    source = tmp_path / "a.sot.html"
    source.write_text("x")
    cache.put(cache.location_for(source), "x = 1\n")

    future = time.time() + 100
    os.utime(source, (future, future))
    assert not cache.is_expired(source)


def test_auto_reload_compares_mtimes(tmp_path):
    cache = CompiledArtifactCache(tmp_path / "compiled", auto_reload=True)
    source = tmp_path / "a.sot.html"
    source.write_text("x")
    past = time.time() - 100
    os.utime(source, (past, past))
    cache.put(cache.location_for(source), "x = 1\n")
    assert not cache.is_expired(source)

    future = time.time() + 100
    os.utime(source, (future, future))
    assert cache.is_expired(source)


def test_get_exists_forget(tmp_path):
    cache = CompiledArtifactCache(tmp_path / "compiled")
    source = tmp_path / "a.sot.html"
    source.write_text("x")
    assert cache.get(source) is None

    cache.put(cache.location_for(source), "x = 1\n")
    assert cache.exists(source)
    assert cache.get(source) == "x = 1\n"

    assert cache.forget(source) is True
    assert not cache.exists(source)
    assert cache.forget(source) is True


def test_load_memoizes_until_put(tmp_path):
    cache = CompiledArtifactCache(tmp_path / "compiled")
    artifact = cache.location_for(tmp_path / "a.sot.html")
    cache.put(artifact, "x = 1\n")
    first = cache.load(artifact)
    assert cache.load(artifact) is first

    cache.put(artifact, "x = 2\n")
    namespace = {}
    exec(cache.load(artifact), namespace)
    assert namespace["x"] == 2


def test_put_leaves_no_temporary_files(tmp_path):
    cache = CompiledArtifactCache(tmp_path / "compiled")
    cache.put(cache.location_for(tmp_path / "a"), "x = 1\n")
    assert [p.name.endswith(".py") for p in (tmp_path / "compiled").iterdir()] == [True]


def test_put_failure_returns_false(tmp_path):
    blocker = tmp_path / "compiled"
    blocker.write_text("not a directory")
    cache = CompiledArtifactCache(blocker)
    assert cache.put(cache.location_for(tmp_path / "a"), "x = 1\n") is False


def test_clear_and_stats(tmp_path):
    cache = CompiledArtifactCache(tmp_path / "compiled")
    assert cache.stats().count == 0

    cache.put(cache.location_for(tmp_path / "a"), "x = 1\n")
    cache.put(cache.location_for(tmp_path / "b"), "y = 2\n")
    stats = cache.stats()
    assert stats.count == 2
    assert stats.size == 12
    assert stats.oldest is not None and stats.newest is not None
    assert stats.size_human == "12 B"

    assert cache.clear() == 2
    assert cache.stats().count == 0
