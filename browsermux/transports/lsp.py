"""Language Server Protocol adapter.

Tools are exposed as ``workspace/executeCommand`` commands named
``browser.<tool>``; the registry schemas back completion and hover so editors
can discover the commands and their arguments.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from lsprotocol import types
from pygls.server import LanguageServer

from .. import __version__
from ..dispatch import Dispatcher, ToolInvocation
from ..errors import TransportError
from ..tools import ToolSpec
from .base import error_envelope, parse_arguments

logger = logging.getLogger(__name__)

COMMAND_PREFIX = "browser."


def command_name(tool: str) -> str:
    return f"{COMMAND_PREFIX}{tool}"


class LspCommandBridge:
    """Translate LSP commands, completions and hovers to registry operations."""

    def __init__(self, dispatcher: Dispatcher) -> None:
        self.dispatcher = dispatcher

    def commands(self) -> List[str]:
        return [command_name(spec.name) for spec in self.dispatcher.registry]

    def tool_for(self, word: str) -> Optional[ToolSpec]:
        name = word[len(COMMAND_PREFIX):] if word.startswith(COMMAND_PREFIX) else word
        return self.dispatcher.registry.get(name)

    async def execute(self, command: str, arguments: Sequence[Any]) -> Dict[str, Any]:
        """Run ``command`` with the first command argument as the tool args."""
        tool = command[len(COMMAND_PREFIX):] if command.startswith(COMMAND_PREFIX) else command
        try:
            args = parse_arguments(arguments[0] if arguments else None)
        except TransportError as exc:
            return error_envelope(None, exc)
        invocation = ToolInvocation.create(tool, args, origin="lsp")
        result = await self.dispatcher.dispatch(invocation)
        return result.to_dict()

    def completion_items(self) -> List[types.CompletionItem]:
        items = []
        for spec in self.dispatcher.registry:
            items.append(
                types.CompletionItem(
                    label=command_name(spec.name),
                    kind=types.CompletionItemKind.Function,
                    detail=spec.description,
                    documentation=types.MarkupContent(
                        kind=types.MarkupKind.Markdown, value=self.hover_markdown(spec)
                    ),
                )
            )
        return items

    def hover_markdown(self, spec: ToolSpec) -> str:
        lines = [f"**{command_name(spec.name)}**", "", spec.description]
        properties = spec.schema.get("properties") or {}
        required = set(spec.schema.get("required") or [])
        if properties:
            lines += ["", "Arguments:"]
            for name, prop in properties.items():
                kind = prop.get("type", "any")
                if isinstance(kind, list):
                    kind = " | ".join(kind)
                marker = " (required)" if name in required else ""
                description = f": {prop['description']}" if prop.get("description") else ""
                lines.append(f"- `{name}` {kind}{marker}{description}")
        return "\n".join(lines)


def _command_arguments(args: Sequence[Any]) -> List[Any]:
    # pygls hands over the executeCommand argument list as one positional value.
    if len(args) == 1 and isinstance(args[0], list):
        return args[0]
    return list(args)


def create_language_server(
    dispatcher: Dispatcher, *, loop: Optional[asyncio.AbstractEventLoop] = None
) -> LanguageServer:
    bridge = LspCommandBridge(dispatcher)
    server = LanguageServer("browsermux", __version__, loop=loop)

    for name in bridge.commands():

        def _register(command: str) -> None:
            @server.command(command)
            async def _execute(ls: LanguageServer, *args: Any) -> Dict[str, Any]:
                envelope = await bridge.execute(command, _command_arguments(args))
                logger.debug("%s -> %s", command, json.dumps(envelope)[:200])
                return envelope

        _register(name)

    @server.feature(
        types.TEXT_DOCUMENT_COMPLETION,
        types.CompletionOptions(trigger_characters=["."]),
    )
    def _completions(ls: LanguageServer, params: types.CompletionParams) -> types.CompletionList:
        return types.CompletionList(is_incomplete=False, items=bridge.completion_items())

    @server.feature(types.TEXT_DOCUMENT_HOVER)
    def _hover(ls: LanguageServer, params: types.HoverParams) -> Optional[types.Hover]:
        document = ls.workspace.get_text_document(params.text_document.uri)
        spec = bridge.tool_for(document.word_at_position(params.position))
        if spec is None:
            return None
        return types.Hover(
            contents=types.MarkupContent(
                kind=types.MarkupKind.Markdown, value=bridge.hover_markdown(spec)
            )
        )

    return server


def serve_lsp(dispatcher: Dispatcher, loop: asyncio.AbstractEventLoop) -> None:
    """Serve LSP on stdin/stdout on ``loop``, closing the session on exit."""
    server = create_language_server(dispatcher, loop=loop)
    logger.info("Serving %s commands over LSP stdio", len(dispatcher.registry))
    try:
        server.start_io()
    finally:
        loop.run_until_complete(dispatcher.shutdown())


__all__ = [
    "COMMAND_PREFIX",
    "LspCommandBridge",
    "command_name",
    "create_language_server",
    "serve_lsp",
]
