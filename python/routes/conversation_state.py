from typing import TypedDict, Dict, Any, Optional, List
from langgraph.graph import StateGraph, END
from langchain_core.runnables import RunnableLambda
from loguru import logger
from pydantic import BaseModel, Field
import time


def _now_ms() -> int:
    return int(time.time() * 1000)


class ProjectEvolution(BaseModel):
    majorChanges: List[Any] = Field(default_factory=list)


class Context(BaseModel):
    messages: List[Any] = Field(default_factory=list)
    edits: List[Any] = Field(default_factory=list)
    projectEvolution: ProjectEvolution = Field(default_factory=ProjectEvolution)
    userPreferences: Dict[str, Any] = Field(default_factory=dict)
    currentTopic: Optional[str] = None


class ConversationStateModel(BaseModel):
    conversationId: str
    startedAt: int
    lastUpdated: int
    context: Context


class GraphState(TypedDict, total=False):
    payload: Dict[str, Any]
    response: Dict[str, Any]


def _node_factory(processor: RunnableLambda):
    def _node(state: GraphState) -> GraphState:
        payload = state.get("payload", {})
        return {"response": processor.invoke(payload)}
    return _node


def _compile(processor: RunnableLambda):
    sg = StateGraph(GraphState)
    sg.add_node("process", _node_factory(processor))
    sg.set_entry_point("process")
    sg.add_edge("process", END)
    return sg.compile()


class ConversationStore:
    """In-memory conversation state for the single active session.

    GET/POST/DELETE each run through a one-node graph; the generation route
    records user prompts with ``add_message``.
    """

    def __init__(self):
        self.state: Optional[ConversationStateModel] = None
        self._get_graph = _compile(RunnableLambda(self._get_compute))
        self._post_graph = _compile(RunnableLambda(self._post_compute))
        self._delete_graph = _compile(RunnableLambda(self._delete_compute))

    def _new_state(self) -> ConversationStateModel:
        now = _now_ms()
        return ConversationStateModel(
            conversationId=f"conv-{now}",
            startedAt=now,
            lastUpdated=now,
            context=Context(),
        )

    def _get_compute(self, _: Dict[str, Any]) -> Dict[str, Any]:
        if self.state is None:
            return {"success": True, "state": None, "message": "No active conversation"}
        return {"success": True, "state": self.state.model_dump()}

    def _post_compute(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        action = payload.get("action")
        data = payload.get("data") or {}

        if action == "reset":
            self.state = self._new_state()
            logger.info("[conversation-state] Reset conversation state")
            return {"success": True, "message": "Conversation state reset", "state": self.state.model_dump()}

        if action == "clear-old":
            if self.state is None:
                return {"success": False, "error": "No active conversation to clear", "status": 404}
            ctx = self.state.context
            ctx.messages = ctx.messages[-5:]
            ctx.edits = ctx.edits[-3:]
            ctx.projectEvolution.majorChanges = ctx.projectEvolution.majorChanges[-2:]
            logger.info("[conversation-state] Cleared old conversation data")
            return {"success": True, "message": "Old conversation data cleared", "state": self.state.model_dump()}

        if action == "update":
            if self.state is None:
                return {"success": False, "error": "No active conversation to update", "status": 404}
            if "currentTopic" in data:
                self.state.context.currentTopic = data["currentTopic"]
            if isinstance(data.get("userPreferences"), dict):
                self.state.context.userPreferences = {
                    **self.state.context.userPreferences,
                    **data["userPreferences"],
                }
            self.state.lastUpdated = _now_ms()
            return {"success": True, "message": "Conversation state updated", "state": self.state.model_dump()}

        return {"success": False, "error": 'Invalid action. Use "reset", "clear-old" or "update"', "status": 400}

    def _delete_compute(self, _: Dict[str, Any]) -> Dict[str, Any]:
        self.state = None
        logger.info("[conversation-state] Cleared conversation state")
        return {"success": True, "message": "Conversation state cleared"}

    def add_message(self, role: str, content: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        if self.state is None:
            self.state = self._new_state()
        now = _now_ms()
        self.state.context.messages.append({
            "id": f"msg-{now}",
            "role": role,
            "content": content,
            "timestamp": now,
            "metadata": metadata or {},
        })
        self.state.lastUpdated = now

    def record_applied_code(self, files: List[str], explanation: str, is_edit: bool) -> None:
        """Note an applied generation on the active conversation, if there is one."""
        if self.state is None or not files:
            return
        now = _now_ms()
        entry = {"timestamp": now, "files": files, "description": explanation}
        if is_edit:
            self.state.context.edits.append(entry)
        else:
            self.state.context.projectEvolution.majorChanges.append(entry)
        self.state.lastUpdated = now

    def GET(self) -> Dict[str, Any]:
        return self._get_graph.invoke({"payload": {}})["response"]

    def POST(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return self._post_graph.invoke({"payload": body})["response"]

    def DELETE(self) -> Dict[str, Any]:
        return self._delete_graph.invoke({"payload": {}})["response"]
