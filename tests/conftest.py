import pytest


def _module(module_id, name, size, chunks=(0,), **extra):
    record = {"id": module_id, "name": name, "size": size, "chunks": list(chunks)}
    record.update(extra)
    return record


@pytest.fixture
def module_record():
    """Factory for flat module records."""
    return _module


@pytest.fixture
def single_chunk_stats():
    return {
        "assets": [{"name": "bundle.js", "size": 1024, "chunks": [0]}],
        "chunks": [{"id": 0, "names": ["main"], "files": ["bundle.js"]}],
        "modules": [_module(0, "./src/index.js", 141)],
    }


@pytest.fixture
def array_config_stats():
    return [
        {
            "name": "config-1",
            "assets": [{"name": "config-1-main.js", "size": 50, "chunks": [0]}],
            "chunks": [{"id": 0, "names": ["main"], "files": ["config-1-main.js"]}],
            "modules": [_module(0, "./src/a.js", 30)],
        },
        {
            "name": "config-2",
            "assets": [{"name": "config-2-main.js", "size": 60, "chunks": [0]}],
            "chunks": [{"id": 0, "names": ["main"], "files": ["config-2-main.js"]}],
            "modules": [_module(0, "./src/b.js", 40)],
        },
    ]


@pytest.fixture
def worker_stats():
    """A main bundle plus a worker-loader child compilation."""
    return {
        "assets": [
            {"name": "bundle.js", "size": 300, "chunks": [0]},
            # worker-loader lists the child's output without chunks
            {"name": "bundle.worker.js", "size": 90, "chunks": []},
        ],
        "chunks": [{"id": 0, "names": ["main"], "files": ["bundle.js"]}],
        "modules": [_module(0, "./src/index.js", 141)],
        "children": [
            {
                "assets": [{"name": "bundle.worker.js", "size": 90, "chunks": [0]}],
                "assetsByChunkName": {"main": "bundle.worker.js"},
                "chunks": [{"id": 0, "names": ["main"], "files": ["bundle.worker.js"]}],
                "modules": [_module(0, "./src/worker.js", 64)],
            }
        ],
    }
