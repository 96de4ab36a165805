"""HTTP-level tests for the FastAPI app, wired to in-memory fakes."""
import json

import pytest
from fastapi.testclient import TestClient
from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from langchain_core.messages import AIMessage

from codegen.generation import CodeGenerator
from main import create_app

from fakes import FakeEnvironment


def _events(body: str):
    return [json.loads(line[len("data: "):]) for line in body.splitlines() if line.startswith("data: ")]


class TestHealth:
    def test_health_reports_sandbox_state(self, client) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["sandboxState"] == "idle"
        assert response.json()["generationEnabled"] is False


class TestSandboxRoutes:
    def test_create_then_status(self, client) -> None:
        created = client.post("/api/create-ai-sandbox")

        assert created.status_code == 200
        assert created.json()["sandboxId"] == "sbx-1"
        assert created.json()["url"] == "https://5173-sbx-1.e2b.app"

        status = client.get("/api/sandbox-status").json()
        assert status["active"] is True
        assert status["healthy"] is True
        assert status["sandboxData"]["sandboxId"] == "sbx-1"

    def test_create_failure_is_500(self, client, provider) -> None:
        provider.fail_create = True

        response = client.post("/api/create-ai-sandbox")

        assert response.status_code == 500
        assert response.json()["success"] is False
        assert "quota exceeded" in response.json()["error"]

    def test_kill_is_idempotent(self, client) -> None:
        client.post("/api/create-ai-sandbox")

        first = client.post("/api/kill-sandbox").json()
        second = client.post("/api/kill-sandbox").json()

        assert first["sandboxKilled"] is True
        assert second == {"success": True, "sandboxKilled": False, "message": "No active sandbox to kill"}

    def test_status_without_sandbox(self, client) -> None:
        status = client.get("/api/sandbox-status").json()

        assert status["active"] is False
        assert status["sandboxData"] is None

    def test_status_for_unknown_sandbox_is_inactive(self, client) -> None:
        status = client.get("/api/sandbox-status", params={"sandbox": "sbx-missing"}).json()

        assert status["success"] is True
        assert status["active"] is False

    def test_status_reconnects_to_named_sandbox(self, client, provider) -> None:
        provider.connectable["sbx-remote"] = FakeEnvironment("sbx-remote")

        status = client.get("/api/sandbox-status", params={"sandbox": "sbx-remote"}).json()

        assert status["active"] is True
        assert status["sandboxData"]["sandboxId"] == "sbx-remote"

    def test_restore_without_id_or_record_is_400(self, client) -> None:
        response = client.post("/api/restore-sandbox", json={})

        assert response.status_code == 400

    def test_restore_by_id(self, client, provider) -> None:
        provider.connectable["sbx-remote"] = FakeEnvironment("sbx-remote")

        response = client.post("/api/restore-sandbox", json={"sandboxId": "sbx-remote"})

        assert response.status_code == 200
        assert response.json()["sandboxId"] == "sbx-remote"

    def test_restore_unknown_id_fails(self, client) -> None:
        response = client.post("/api/restore-sandbox", json={"sandboxId": "sbx-missing"})

        assert response.status_code == 500
        assert response.json()["success"] is False


class TestApplyRoutes:
    def test_missing_response_is_400(self, client) -> None:
        response = client.post("/api/apply-ai-code", json={})

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "response is required"}

    def test_invalid_json_is_400(self, client) -> None:
        response = client.post(
            "/api/apply-ai-code", content=b"not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400

    def test_apply_without_sandbox_is_preview(self, client) -> None:
        response = client.post("/api/apply-ai-code", json={"response": '<file path="src/App.jsx">x</file>'})

        body = response.json()
        assert response.status_code == 200
        assert body["preview"] is True
        assert body["results"]["filesCreated"] == ["src/App.jsx"]

    def test_apply_writes_into_sandbox(self, client, manager, services) -> None:
        client.post("/api/create-ai-sandbox")
        services.conversations.POST({"action": "reset"})

        body = client.post("/api/apply-ai-code", json={
            "response": '<file path="src/App.jsx">app</file><explanation>Built it</explanation>',
        }).json()

        assert body["results"]["filesCreated"] == ["src/App.jsx"]
        assert body["explanation"] == "Built it"
        assert manager.environment.files["/home/user/app/src/App.jsx"] == "app"
        assert services.conversations.state.context.projectEvolution.majorChanges[0]["files"] == ["src/App.jsx"]

    def test_apply_stream_emits_progress_then_complete(self, client) -> None:
        client.post("/api/create-ai-sandbox")

        response = client.post("/api/apply-ai-code-stream", json={
            "response": '<file path="src/App.jsx">app</file><file path="src/List.jsx">// ...</file>',
        })

        assert response.headers["content-type"].startswith("text/event-stream")
        events = _events(response.text)
        assert events[0]["type"] == "warning"
        assert events[1]["type"] == "start"
        assert events[-1]["type"] == "complete"
        assert sorted(events[-1]["results"]["filesCreated"]) == ["src/App.jsx", "src/List.jsx"]


class TestPackageRoutes:
    def test_install_requires_packages(self, client) -> None:
        assert client.post("/api/install-packages", json={"packages": []}).status_code == 400
        assert client.post("/api/install-packages", json={"packages": ["", " "]}).status_code == 400

    def test_install_without_sandbox_is_404(self, client) -> None:
        response = client.post("/api/install-packages", json={"packages": ["axios"]})

        assert response.status_code == 404

    def test_detect_requires_files(self, client) -> None:
        assert client.post("/api/detect-and-install-packages", json={"files": []}).status_code == 400

    def test_detect_with_only_local_imports_installs_nothing(self, client) -> None:
        client.post("/api/create-ai-sandbox")

        body = client.post("/api/detect-and-install-packages", json={
            "files": {"src/App.jsx": "import Header from './Header'"},
        }).json()

        assert body["success"] is True
        assert body["packagesDetected"] == []


class TestFilesRoute:
    def test_no_sandbox_is_404(self, client) -> None:
        assert client.get("/api/get-sandbox-files").status_code == 404

    def test_returns_project_files(self, client, manager) -> None:
        client.post("/api/create-ai-sandbox")
        manager.environment.files["/home/user/app/src/App.jsx"] = "app"

        body = client.get("/api/get-sandbox-files").json()

        assert body["files"] == {"src/App.jsx": "app"}
        assert body["fileCount"] == 1


class TestConversationRoute:
    def test_reset_get_and_delete(self, client) -> None:
        assert client.post("/api/conversation-state", json={"action": "reset"}).json()["success"] is True
        assert client.get("/api/conversation-state").json()["state"] is not None
        assert client.delete("/api/conversation-state").json()["success"] is True
        assert client.get("/api/conversation-state").json()["state"] is None

    def test_unknown_action_is_400(self, client) -> None:
        assert client.post("/api/conversation-state", json={"action": "nope"}).status_code == 400


class TestGenerateRoute:
    def test_missing_prompt_is_400(self, client) -> None:
        assert client.post("/api/generate-ai-code-stream", json={}).status_code == 400

    def test_without_model_is_501(self, client) -> None:
        assert client.post("/api/generate-ai-code-stream", json={"prompt": "a todo app"}).status_code == 501

    @pytest.fixture
    def generating_client(self, services):
        text = '<file path="src/App.jsx">export default () => null</file> <package>axios</package>'
        services.generator = CodeGenerator(GenericFakeChatModel(messages=iter([AIMessage(content=text)])))
        with TestClient(create_app(services)) as test_client:
            yield test_client

    def test_streams_content_packages_and_complete(self, generating_client, services) -> None:
        response = generating_client.post("/api/generate-ai-code-stream", json={"prompt": "a todo app"})

        events = _events(response.text)
        assert events[0] == {"type": "status", "message": "Initializing AI..."}
        assert {"type": "package", "name": "axios", "message": "📦 Package detected: axios"} in events
        assert events[-1]["type"] == "complete"
        assert events[-1]["packages"] == ["axios"]
        assert services.conversations.state.context.messages[0]["content"] == "a todo app"
