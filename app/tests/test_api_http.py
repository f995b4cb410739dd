from __future__ import annotations

import os
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, List, cast
from unittest import TestCase, mock

from starlette.routing import WebSocketRoute
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from conftest import SAMPLE_URL, FakeRunner
from mediarelay.config import CONNECTED_MESSAGE, ServerEnvironmentConfig, ToolKind
from mediarelay.core.runner import ProcessRunner
from mediarelay.core.tools import DownloaderSettings
from mediarelay.core.updates import ToolUpdateReport, ToolVersion, ToolVersionService
from mediarelay.models.api.errors import ErrorCode
from mediarelay.server import create_app

TOOL_TIMESTAMP = 1700000000.0


class FakeToolService:
    def __init__(self) -> None:
        self.update_calls: List[bool] = []

    async def versions(self) -> Dict[ToolKind, ToolVersion]:
        return {
            ToolKind.DOWNLOADER: ToolVersion("2024.12.13", TOOL_TIMESTAMP),
            ToolKind.MUXER: ToolVersion("6.1.1", TOOL_TIMESTAMP),
        }

    async def check_updates(self, force: bool = False) -> Dict[ToolKind, ToolUpdateReport]:
        self.update_calls.append(force)
        return {
            ToolKind.MUXER: ToolUpdateReport(reason="managed externally"),
            ToolKind.DOWNLOADER: ToolUpdateReport(
                old_version="2024.12.13",
                new_version="2024.12.13",
                reason="already up to date",
            ),
        }


def _config(base: Path) -> ServerEnvironmentConfig:
    return ServerEnvironmentConfig(
        name="mediarelay test",
        host="127.0.0.1",
        port=3000,
        log_level="info",
        data_folder=str(base / "data"),
        cache_folder=str(base / "cache"),
        download_folder=str(base / "downloads"),
        ytdlp_path="yt-dlp",
        ffmpeg_path="ffmpeg",
        cookies_file=None,
        single_concurrency=1,
        playlist_concurrency=3,
        metadata_ttl=300,
        metadata_sweep_threshold=100,
        shutdown_grace=1,
        kill_grace=1,
        update_check_url="https://example.invalid/releases/latest",
        update_check_interval=86400,
    )


class _AppTestCase(TestCase):
    runner_options: Dict[str, Any] = {}

    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        base = Path(self.temp_dir.name)
        self.config = _config(base)
        self.download_dir = Path(self.config.download_folder)
        self.download_dir.mkdir(parents=True)
        settings = DownloaderSettings.from_environment(self.config)
        self.runner = FakeRunner(**self.runner_options)
        self.tools = FakeToolService()
        self.exit_requests: List[float] = []
        components = create_app(
            self.config,
            settings=settings,
            runner=cast(ProcessRunner, self.runner),
            tools=cast(ToolVersionService, self.tools),
            request_exit=lambda: self.exit_requests.append(time.monotonic()),
        )
        self.app = components.app
        self.orchestrator = components.orchestrator
        self._client_cm = TestClient(components.app)
        self.client = self._client_cm.__enter__()
        self.addCleanup(self.temp_dir.cleanup)
        self.addCleanup(self._client_cm.__exit__, None, None, None)


class ApiHttpRoutesTest(_AppTestCase):
    def test_healthcheck_returns_summary(self) -> None:
        response = self.client.get("/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["service"], "mediarelay test")
        self.assertEqual(payload["version"], "1.0.0")
        self.assertEqual(payload["active"], 0)
        self.assertEqual(payload["queued"], 0)
        self.assertFalse(payload["shuttingDown"])

    def test_video_info_returns_summary(self) -> None:
        response = self.client.post("/video-info", json={"url": SAMPLE_URL})

        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(
            response.json(),
            {
                "title": "Test Clip",
                "thumbnail": "https://i.ytimg.com/vi/abc123XYZ/hq.jpg",
                "fileSize": "1.21 MB",
                "availableQualities": [720, 360],
                "source": "youtube",
            },
        )

    def test_video_info_requires_url(self) -> None:
        response = self.client.post("/video-info", json={"format": "mp4"})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], ErrorCode.INVALID_JSON_PAYLOAD.value)
        self.assertIn("url", response.json()["detail"])

    def test_video_info_rejects_non_json_body(self) -> None:
        response = self.client.post(
            "/video-info", content=b"{broken", headers={"Content-Type": "application/json"}
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"], {"json": "Invalid JSON payload"})

    def test_video_info_rejects_unknown_source(self) -> None:
        response = self.client.post(
            "/video-info", json={"url": "https://vimeo.com/1", "source": "vimeo"}
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], ErrorCode.UNSUPPORTED_SOURCE.value)

    def test_tool_versions(self) -> None:
        response = self.client.get("/tools")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {
                "yt-dlp": {"version": "2024.12.13", "lastCheckTimestamp": TOOL_TIMESTAMP},
                "ffmpeg": {"version": "6.1.1", "lastCheckTimestamp": TOOL_TIMESTAMP},
            },
        )

    def test_tool_update_passes_force_flag(self) -> None:
        response = self.client.post("/tools/update", json={"force": True})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.tools.update_calls, [True])
        payload = response.json()
        self.assertEqual(payload["yt-dlp"]["reason"], "already up to date")
        self.assertEqual(payload["ffmpeg"]["reason"], "managed externally")

    def test_downloads_are_served(self) -> None:
        (self.download_dir / "clip.mp4").write_bytes(b"media-bytes")

        response = self.client.get("/downloads/clip.mp4")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, b"media-bytes")

    def test_shutdown_schedules_process_exit(self) -> None:
        response = self.client.post("/shutdown")

        self.assertEqual(response.status_code, 202)
        self.assertEqual(response.json(), {"message": "Server is shutting down..."})
        deadline = time.monotonic() + 2
        while not self.exit_requests and time.monotonic() < deadline:
            time.sleep(0.02)
        self.assertEqual(len(self.exit_requests), 1)

    def test_token_is_enforced_when_configured(self) -> None:
        with mock.patch.dict(os.environ, {"MEDIARELAY_SERVER_TOKEN": "s3cret"}):
            self.assertEqual(self.client.get("/").status_code, 200)
            denied = self.client.get("/tools")
            self.assertEqual(denied.status_code, 401)
            self.assertEqual(denied.json()["error"], ErrorCode.TOKEN_MISSING_OR_INVALID.value)
            bearer = self.client.get("/tools", headers={"Authorization": "Bearer s3cret"})
            self.assertEqual(bearer.status_code, 200)
            query = self.client.get("/tools?token=s3cret")
            self.assertEqual(query.status_code, 200)


class ApiMetadataFailureTest(_AppTestCase):
    runner_options = {"fail_info": True}

    def test_video_info_reports_tool_failure(self) -> None:
        response = self.client.post("/video-info", json={"url": SAMPLE_URL})

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json()["error"], ErrorCode.METADATA_FAILED.value)


class ApiWebSocketRoutesTest(_AppTestCase):
    def _receive_until(
        self, websocket: Any, event_type: str, *, attempts: int = 20
    ) -> List[Dict[str, Any]]:
        received: List[Dict[str, Any]] = []
        for _ in range(attempts):
            message = cast(Dict[str, Any], websocket.receive_json())
            received.append(message)
            if message.get("type") == event_type:
                return received
        self.fail(f"event '{event_type}' not received after {attempts} messages")

    def test_websocket_route_is_registered_on_router(self) -> None:
        paths = [
            route.path for route in self.app.router.routes if isinstance(route, WebSocketRoute)
        ]

        self.assertEqual(paths, ["/ws"])

    def test_client_id_is_required(self) -> None:
        with self.assertRaises(WebSocketDisconnect) as closed:
            with self.client.websocket_connect("/ws"):
                pass
        self.assertEqual(closed.exception.code, 1008)

    def test_download_request_streams_events(self) -> None:
        with self.client.websocket_connect("/ws?clientId=client-1") as websocket:
            greeting = websocket.receive_json()
            self.assertEqual(greeting, {"type": "status", "message": CONNECTED_MESSAGE})

            websocket.send_json({"type": "download_request", "url": SAMPLE_URL, "format": "mp3"})
            received = self._receive_until(websocket, "complete")

        types = [message["type"] for message in received]
        self.assertEqual(types[0], "queued")
        self.assertIn("item_info", types)
        complete = received[-1]
        self.assertTrue(complete["filename"].endswith(".mp3"))
        self.assertTrue((self.download_dir / complete["filename"]).is_file())
        self.assertEqual({message["itemId"] for message in received}, {complete["itemId"]})

    def test_malformed_messages_are_reported_without_item(self) -> None:
        with self.client.websocket_connect("/ws?clientId=client-1") as websocket:
            websocket.receive_json()

            websocket.send_text("not json")
            invalid_json = websocket.receive_json()
            websocket.send_json({"type": "pause"})
            unknown_type = websocket.receive_json()
            websocket.send_json({"type": "download_request"})
            missing_url = websocket.receive_json()
            websocket.send_bytes(b'{"type": "cancel", "itemId": "x"}')
            binary = websocket.receive_json()
            websocket.send_json({"type": "cancel", "itemId": "youtube_gone_abcde"})
            still_open = websocket.receive_json()

        self.assertEqual(invalid_json["type"], "error")
        self.assertEqual(binary, invalid_json)
        self.assertEqual(still_open["message"], "Cancellation request received...")
        self.assertNotIn("itemId", invalid_json)
        self.assertEqual(unknown_type["message"], "unknown message type 'pause'")
        self.assertEqual(missing_url["type"], "error")
        self.assertNotIn("itemId", missing_url)

    def test_cancel_of_unknown_item_reports_status(self) -> None:
        with self.client.websocket_connect("/ws?clientId=client-1") as websocket:
            websocket.receive_json()
            websocket.send_json({"type": "cancel", "itemId": "youtube_gone_abcde"})
            acknowledged = websocket.receive_json()
            missing = websocket.receive_json()

        self.assertEqual(acknowledged["message"], "Cancellation request received...")
        self.assertEqual(missing["message"], "Item not found or already completed/cancelled.")
        self.assertEqual(missing["itemId"], "youtube_gone_abcde")

    def test_token_is_required_when_configured(self) -> None:
        with mock.patch.dict(os.environ, {"MEDIARELAY_SERVER_TOKEN": "s3cret"}):
            with self.assertRaises(WebSocketDisconnect):
                with self.client.websocket_connect("/ws?clientId=client-1"):
                    pass
            with self.client.websocket_connect(
                "/ws?clientId=client-1&token=s3cret"
            ) as websocket:
                greeting = websocket.receive_json()
        self.assertEqual(greeting["message"], CONNECTED_MESSAGE)
