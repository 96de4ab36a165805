"""Unit tests for FileCache and its rebuild from a sandbox."""
from codegen.file_cache import FileCache, read_project_files, rebuild_file_cache
from sandbox.environment import ExecutionOutput

from fakes import FakeEnvironment


class TestFileCache:
    def test_put_then_get_returns_identical_content(self) -> None:
        cache = FileCache()
        content = "const greeting = 'héllo'\n\n  \t\n"

        cache.put("src/App.jsx", content)

        assert cache.get("src/App.jsx") == content
        assert "src/App.jsx" in cache
        assert len(cache) == 1

    def test_staleness_follows_sandbox_id(self) -> None:
        cache = FileCache()
        assert cache.is_stale("sbx-1")

        cache.reset("sbx-1", {"src/App.jsx": "x"})

        assert not cache.is_stale("sbx-1")
        assert cache.is_stale("sbx-2")
        assert cache.lastSync is not None

    def test_to_dict_exposes_files_and_sync_metadata(self) -> None:
        cache = FileCache()
        cache.reset("sbx-1", {"src/index.css": "body {}"})

        snapshot = cache.to_dict()

        assert snapshot["sandboxId"] == "sbx-1"
        assert snapshot["files"]["src/index.css"]["content"] == "body {}"


class TestRebuild:
    async def test_rebuild_reads_project_files_from_environment(self) -> None:
        environment = FakeEnvironment("sbx-9")
        environment.files["/home/user/app/src/App.jsx"] = "export default 1"
        cache = FileCache()
        cache.reset("sbx-old", {"src/Old.jsx": "gone"})

        await rebuild_file_cache(cache, environment, "sbx-9", "/home/user/app")

        assert cache.sandboxId == "sbx-9"
        assert cache.get("src/App.jsx") == "export default 1"
        assert "src/Old.jsx" not in cache

    async def test_failed_rebuild_leaves_empty_cache_for_sandbox(self) -> None:
        environment = FakeEnvironment("sbx-9")
        environment.run_handler = lambda code: ExecutionOutput(error="SandboxError: gone")
        cache = FileCache()
        cache.reset("sbx-old", {"src/Old.jsx": "gone"})

        await rebuild_file_cache(cache, environment, "sbx-9")

        assert cache.sandboxId == "sbx-9"
        assert len(cache) == 0

    async def test_raising_environment_leaves_empty_cache_for_sandbox(self) -> None:
        environment = FakeEnvironment("sbx-9")

        def handler(code: str) -> ExecutionOutput:
            raise ConnectionError("sandbox connection reset")

        environment.run_handler = handler
        cache = FileCache()

        await rebuild_file_cache(cache, environment, "sbx-9")

        assert cache.sandboxId == "sbx-9"
        assert len(cache) == 0

    async def test_read_project_files_returns_structure(self) -> None:
        environment = FakeEnvironment()
        environment.files["/home/user/app/index.html"] = "<div id=root></div>"

        files, structure = await read_project_files(environment, "/home/user/app")

        assert files == {"index.html": "<div id=root></div>"}
        assert structure == "app/"
