"""
Booking Agent - answers one client message, calling booking tools as needed.
Uses LangGraph for an explicit, bounded tool loop:

    compose -> (text)        -> finish
            -> (tool calls)  -> execute -> compose ...
            -> (round limit) -> fallback
"""

import json
import logging
from typing import TypedDict, List, Optional

from langgraph.graph import StateGraph, END

from staffline.agents.prompts import fallback_reply
from staffline.agents.tools import BookingToolbox
from staffline.schemas.agent import AgentResult, ToolExecution
from staffline.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class AgentState(TypedDict):
    """State carried through one turn."""

    # OpenAI-format messages, system prompt first
    messages: List[dict]

    # Tool calls requested by the last model response
    pending_calls: List[dict]

    # Loop bound
    rounds: int
    max_rounds: int

    # Outcome
    reply: Optional[str]
    exhausted: bool
    executions: List[dict]


class BookingAgent:
    """
    Runs the model against the booking tools until it produces a reply.
    Only ExternalServiceError from the model escapes run().
    """

    def __init__(
        self,
        llm,
        toolbox: BookingToolbox,
        language: str = "ru",
        max_rounds: Optional[int] = None,
    ):
        self.llm = llm
        self.toolbox = toolbox
        self.language = language
        self.max_rounds = max_rounds if max_rounds is not None else settings.AGENT_MAX_TOOL_ROUNDS
        self.tool_definitions = toolbox.definitions()

        # Build the graph
        self.graph = self._build_graph()

    def _build_graph(self):
        """Build the LangGraph state machine for one turn."""

        workflow = StateGraph(AgentState)

        workflow.add_node("compose", self._compose_node)
        workflow.add_node("execute", self._execute_node)
        workflow.add_node("fallback", self._fallback_node)

        workflow.set_entry_point("compose")

        workflow.add_conditional_edges(
            "compose",
            self._route_after_compose,
            {
                "finish": END,
                "execute": "execute",
                "fallback": "fallback",
            }
        )
        workflow.add_edge("execute", "compose")
        workflow.add_edge("fallback", END)

        return workflow.compile()

    # Node implementations

    async def _compose_node(self, state: AgentState) -> dict:
        """Send the conversation and tool set to the model."""
        response = await self.llm.complete_with_tools(
            messages=state["messages"],
            tools=self.tool_definitions,
        )

        if response.type == "tool_calls" and response.tool_calls:
            logger.info("Agent round %d requested %d tool call(s)", state["rounds"] + 1, len(response.tool_calls))
            calls = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": call.arguments},
                }
                for call in response.tool_calls
            ]
            return {
                "messages": state["messages"] + [
                    {"role": "assistant", "content": response.content, "tool_calls": calls}
                ],
                "pending_calls": calls,
            }

        return {
            "reply": (response.content or "").strip() or fallback_reply(self.language),
            "pending_calls": [],
        }

    def _route_after_compose(self, state: AgentState) -> str:
        if state.get("reply") is not None:
            return "finish"
        if state["rounds"] >= state["max_rounds"]:
            logger.warning("Agent hit the %d tool round limit", state["max_rounds"])
            return "fallback"
        return "execute"

    async def _execute_node(self, state: AgentState) -> dict:
        """Execute every requested tool call and append the results."""
        messages = list(state["messages"])
        executions = list(state["executions"])

        for call in state["pending_calls"]:
            name = call["function"]["name"]
            result = await self.toolbox.execute(name, call["function"]["arguments"])
            messages.append({
                "role": "tool",
                "tool_call_id": call["id"],
                "content": json.dumps(result, ensure_ascii=False, default=str),
            })
            executions.append({
                "name": name,
                "ok": result["ok"],
                "error_type": None if result["ok"] else result["error"]["type"],
            })

        return {
            "messages": messages,
            "pending_calls": [],
            "executions": executions,
            "rounds": state["rounds"] + 1,
        }

    async def _fallback_node(self, state: AgentState) -> dict:
        return {"reply": fallback_reply(self.language), "exhausted": True}

    # Public API

    async def run(self, system_prompt: str, history: List[dict]) -> AgentResult:
        """
        Run one turn. history holds prior messages and ends with the new
        user message.
        """
        initial: AgentState = {
            "messages": [{"role": "system", "content": system_prompt}] + list(history),
            "pending_calls": [],
            "rounds": 0,
            "max_rounds": self.max_rounds,
            "reply": None,
            "exhausted": False,
            "executions": [],
        }
        # Two graph steps per round plus entry and exit
        final = await self.graph.ainvoke(
            initial,
            config={"recursion_limit": 2 * self.max_rounds + 5},
        )

        return AgentResult(
            reply=final["reply"],
            rounds=final["rounds"],
            exhausted=final["exhausted"],
            tool_executions=[ToolExecution(**item) for item in final["executions"]],
        )
