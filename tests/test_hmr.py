"""
Tests for the HMR engine, its channels and the file watcher feed
"""

import asyncio
import json
import time
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError

from forgeserve.core.config import HmrOptions, UserConfig, UserServerConfig
from forgeserve.core.schemas import (
    FullReloadMessage,
    PingMessage,
    UpdateMessage,
    UpdateResult,
    decode_message,
    encode_message,
)
from forgeserve.dev.hmr import HmrChannel, HmrEngine, InvalidationGraph
from forgeserve.dev.server import DevServer
from forgeserve.dev.watcher import ChangeType, FileChange, FileWatcher


def fake_channel(fail=False):
    websocket = Mock()
    websocket.send_text = AsyncMock(side_effect=RuntimeError("socket gone") if fail else None)
    return HmrChannel(websocket)


def sent(channel):
    return [json.loads(call.args[0]) for call in channel.websocket.send_text.await_args_list]


def change(path, change_type=ChangeType.MODIFIED):
    return FileChange(path=path, change_type=change_type, timestamp=time.time())


class TestInvalidationGraph:

    def test_affected_is_transitive(self):
        graph = InvalidationGraph()
        graph.add_dependency("app.js", "util.js")
        graph.add_dependency("util.js", "math.js")
        graph.add_module("other.js")

        assert graph.affected(["math.js"]) == {"math.js", "util.js", "app.js"}
        assert graph.affected(["other.js"]) == {"other.js"}
        assert graph.dependents_of("util.js") == {"app.js"}

    def test_cycles_terminate(self):
        graph = InvalidationGraph()
        graph.add_dependency("a.js", "b.js")
        graph.add_dependency("b.js", "a.js")

        assert graph.affected(["a.js"]) == {"a.js", "b.js"}
        assert "a.js" in graph
        assert len(graph) == 2


class TestBroadcast:

    @pytest.fixture
    def engine(self, compiler):
        return HmrEngine(compiler, HmrOptions())

    @pytest.mark.asyncio
    async def test_failing_channel_does_not_block_others(self, engine):
        first, broken, last = fake_channel(), fake_channel(fail=True), fake_channel()
        engine.channels.extend([first, broken, last])

        delivered = await engine.broadcast(UpdateMessage(module_ids=["a.js"]))
        await engine.broadcast(FullReloadMessage())

        assert delivered == 2
        assert broken.closed
        assert broken not in engine.channels
        assert [m["type"] for m in sent(first)] == ["update", "full-reload"]
        assert [m["type"] for m in sent(last)] == ["update", "full-reload"]

    @pytest.mark.asyncio
    async def test_closed_channels_skipped(self, engine):
        channel = fake_channel()
        channel.closed = True
        engine.channels.append(channel)

        assert await engine.broadcast(FullReloadMessage()) == 0
        assert sent(channel) == []


class TestHandleChanges:

    @pytest.fixture
    def engine(self, compiler):
        engine = HmrEngine(compiler, HmrOptions())
        engine.channels.append(fake_channel())
        return engine

    @pytest.mark.asyncio
    async def test_update_includes_dependents(self, engine, compiler):
        compiler.update_result = UpdateResult(changed=["util.js"], dependencies={"app.js": ["util.js"]})

        message = await engine.handle_changes([change("util.js")])

        assert isinstance(message, UpdateMessage)
        assert message.module_ids == ["app.js", "util.js"]
        payload = sent(engine.channels[0])[0]
        assert payload["type"] == "update"
        assert payload["moduleIds"] == ["app.js", "util.js"]
        assert isinstance(payload["timestamp"], int)

    @pytest.mark.asyncio
    async def test_removed_files_force_full_reload(self, engine, compiler):
        compiler.update_result = UpdateResult(removed=["gone.js"])

        message = await engine.handle_changes([change("gone.js")])

        assert isinstance(message, FullReloadMessage)
        assert sent(engine.channels[0]) == [{"type": "full-reload"}]

    @pytest.mark.asyncio
    async def test_structural_change_forces_full_reload(self, engine, compiler):
        compiler.update_result = UpdateResult(changed=["a.js"])

        message = await engine.handle_changes([change("a.js", ChangeType.MOVED)])

        assert isinstance(message, FullReloadMessage)

    @pytest.mark.asyncio
    async def test_compiler_full_reload_flag(self, engine, compiler):
        compiler.update_result = UpdateResult(changed=["index.html"], full_reload=True)

        assert isinstance(await engine.handle_changes([change("index.html")]), FullReloadMessage)

    @pytest.mark.asyncio
    async def test_nothing_changed(self, engine, compiler):
        compiler.update_result = UpdateResult()

        assert await engine.handle_changes([change("ignored.tmp")]) is None
        assert sent(engine.channels[0]) == []
        assert list(engine.records) == []

    @pytest.mark.asyncio
    async def test_compile_error_relayed(self, engine, compiler):
        compiler.update_error = RuntimeError("Unexpected token")

        await engine.handle_changes([change("broken.js")])

        payload = sent(engine.channels[0])[0]
        assert payload["type"] == "error"
        assert payload["payload"]["message"] == "Unexpected token"
        assert payload["payload"]["paths"] == ["broken.js"]

    @pytest.mark.asyncio
    async def test_batches_processed_in_order(self, engine, compiler):
        compiler.update_result = UpdateResult(changed=["a.js"])
        engine.activate(watch=False)
        try:
            engine.notify([change("first.js")])
            engine.notify([change("second.js")])
            engine.notify([change("third.js")])
            await engine.drain()
        finally:
            await engine.deactivate()

        assert [record["paths"] for record in engine.records] == [["first.js"], ["second.js"], ["third.js"]]
        assert [call[1] for call in compiler.called("update")] == [["first.js"], ["second.js"], ["third.js"]]

    def test_notify_before_activate_drops(self, engine):
        engine.notify([change("a.js")])

        assert not engine.is_active


class TestHmrWebsocket:

    def test_connected_then_ping_pong(self, compiler, user_config):
        server = DevServer(compiler, user_config)
        engine = server.context.hmr_engine

        with TestClient(server.app).websocket_connect("/__hmr") as websocket:
            assert websocket.receive_json() == {"type": "connected"}
            assert len(engine.channels) == 1

            websocket.send_text("not a message")
            websocket.send_json({"type": "ping"})
            assert websocket.receive_json() == {"type": "pong"}

    def test_binary_frame_is_ignored(self, compiler, user_config):
        server = DevServer(compiler, user_config)

        with TestClient(server.app).websocket_connect("/__hmr") as websocket:
            assert websocket.receive_json() == {"type": "connected"}

            websocket.send_bytes(b"\x00\x01")
            websocket.send_json({"type": "ping"})
            assert websocket.receive_json() == {"type": "pong"}
            assert len(server.context.hmr_engine.channels) == 1

    def test_companion_app_on_separate_port(self, compiler, tmp_path):
        config = UserConfig(root=str(tmp_path), server=UserServerConfig(port=9000, hmr={"port": 9801}))
        server = DevServer(compiler, config)

        hmr_app = server.context.hmr_app
        assert hmr_app is not server.app

        with TestClient(hmr_app).websocket_connect("/__hmr") as websocket:
            assert decode_message(websocket.receive_text()).type == "connected"

    def test_no_engine_when_disabled(self, compiler, tmp_path):
        config = UserConfig(root=str(tmp_path), server=UserServerConfig(hmr=False))
        server = DevServer(compiler, config)

        assert server.context.hmr_engine is None
        assert server.context.hmr_app is None


class TestFileWatcher:

    @pytest.mark.asyncio
    async def test_debounced_batch_keeps_observation_order(self, tmp_path):
        batches = []
        watcher = FileWatcher([tmp_path], batches.append, debounce_ms=20, ignore_patterns=["*.pyc"])
        watcher._loop = asyncio.get_running_loop()

        watcher.record("a.js", ChangeType.MODIFIED)
        watcher.record("cache.pyc", ChangeType.MODIFIED)
        watcher.record("b.js", ChangeType.CREATED)
        watcher.record("a.js", ChangeType.MODIFIED)
        await asyncio.sleep(0.1)

        assert len(batches) == 1
        assert [c.path for c in batches[0]] == ["b.js", "a.js"]
        assert watcher.stats.ignored == 1
        assert watcher.stats.delivered == 2
        assert watcher.stats.batches == 1

    def test_failing_batch_handler_is_contained(self, tmp_path):
        watcher = FileWatcher([tmp_path], Mock(side_effect=RuntimeError("boom")))
        watcher._pending["a.js"] = change("a.js")

        watcher.flush()

        assert watcher.stats.batches == 1

    def test_ignored_directories(self, tmp_path):
        watcher = FileWatcher([tmp_path], Mock(), ignore_patterns=["node_modules"])

        assert watcher.is_ignored(tmp_path / "node_modules" / "lib" / "index.js")
        assert not watcher.is_ignored(tmp_path / "src" / "index.js")


class TestMessages:

    def test_ping_decodes(self):
        assert isinstance(decode_message('{"type": "ping"}'), PingMessage)

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            decode_message('{"type": "teleport"}')

    def test_update_uses_camel_case_on_the_wire(self):
        payload = json.loads(encode_message(UpdateMessage(module_ids=["a.js"], timestamp=1)))

        assert payload == {"type": "update", "moduleIds": ["a.js"], "timestamp": 1}
