"""Exception hierarchy for lovassist."""


class LovassistError(Exception):
    """Base class for all lovassist errors."""


class StoreError(LovassistError):
    """The document store query failed."""


class RerankError(LovassistError):
    """The rerank call failed or returned something unusable."""


class WebSearchError(LovassistError):
    """The web search provider failed or is not configured."""


class AgentError(LovassistError):
    """The language-model call failed or returned an empty response."""


class ToolArgumentsError(LovassistError):
    """A tool call from the model carried an invalid payload."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"{tool_name}: {message}")
        self.tool_name = tool_name
