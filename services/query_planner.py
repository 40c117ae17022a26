# services/query_planner.py
"""First model call: decide whether to search, and with which query."""
import json
import logging
from typing import Any, Dict, List, Optional

from core.domain import ChatCompletion, SearchDecision
from core.interfaces import IChatModel
from config import settings

logger = logging.getLogger(settings.LOGGER_NAME)

SEARCH_TOOL_NAME = "search_knowledge_base"

SEARCH_TOOL: Dict[str, Any] = {
    "type": "function",
    "function": {
        "name": SEARCH_TOOL_NAME,
        "description": (
            f"Retrieve knowledge about a {settings.ASSISTANT_DOMAIN} entity or concept. "
            "Use this when the answer should be grounded in reference material."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Entity + property to search"},
            },
            "required": ["query"],
        },
    },
}


def _tool_calls_of(completion: ChatCompletion) -> List[Dict[str, Any]]:
    """Tool calls, with a legacy function_call folded in as one call."""
    calls = list(completion.tool_calls or [])
    if not calls and completion.function_call:
        calls = [{"type": "function", "function": completion.function_call}]
    return calls


def find_search_call(completion: ChatCompletion) -> Optional[Dict[str, Any]]:
    for call in _tool_calls_of(completion):
        function = (call or {}).get("function") or {}
        if call.get("type", "function") == "function" and function.get("name") == SEARCH_TOOL_NAME:
            return call
    return None


def extract_query(tool_call: Optional[Dict[str, Any]]) -> Optional[str]:
    """The `query` argument of a tool call, or None when it is missing or unparseable."""
    if not tool_call:
        return None
    args = (tool_call.get("function") or {}).get("arguments")
    if isinstance(args, str):
        try:
            args = json.loads(args)
        except ValueError:
            return None
    if isinstance(args, dict) and isinstance(args.get("query"), str) and args["query"].strip():
        return args["query"].strip()
    return None


def decision_from_completion(completion: ChatCompletion) -> SearchDecision:
    call = find_search_call(completion)
    if call is None:
        return SearchDecision(invoke_search=False, query=None, direct_answer=completion.content)
    return SearchDecision(invoke_search=True, query=extract_query(call), direct_answer=completion.content)


class QueryPlanner:
    """Offers the model the search tool and turns its reply into a SearchDecision."""

    def __init__(self, chat_model: IChatModel, temperature: float = settings.LLM_TEMPERATURE):
        self.chat_model = chat_model
        self.temperature = temperature

    async def plan(self, messages: List[Dict[str, Any]]) -> SearchDecision:
        """Raises LLMServiceError when the planning call fails."""
        completion = await self.chat_model.complete(messages, tools=[SEARCH_TOOL],
                                                    temperature=self.temperature)
        decision = decision_from_completion(completion)
        if decision.invoke_search:
            logger.info(f"Model requested a search (query={decision.query!r})")
        else:
            logger.info("Model answered without requesting a search")
        return decision
