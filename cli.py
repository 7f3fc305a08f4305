from __future__ import annotations

import argparse
import os
import sys
from typing import List, Optional, Sequence

from dotenv import load_dotenv

from ger.cancellation import CancellationToken
from ger.config import Settings
from ger.errors import ProviderError
from ger.logging_config import configure_logging
from ger.rag_pipeline import RAGPipeline
from ger.tools import RagTools
from ger.types import ChatModel, EmbeddingProvider
from ger.vector_store import VectorStore


class _NoopEmbeddingModel:
    """Placeholder for commands that never embed (remove, clear, stats, prompt)."""

    def embed(self, text: str, cancel_token: Optional[CancellationToken] = None) -> List[float]:
        raise ProviderError("Embedding model not initialized for this command.")

    def embed_batch(
        self, texts: Sequence[str], cancel_token: Optional[CancellationToken] = None
    ) -> List[List[float]]:
        raise ProviderError("Embedding model not initialized for this command.")


def _build_embedding_model(settings: Settings) -> EmbeddingProvider:
    if settings.embedding_provider == "local":
        from ger.embeddings import LocalEmbeddingModel

        return LocalEmbeddingModel(settings.embedding_model_name)
    if settings.embedding_provider == "ollama":
        from ger.ollama import OllamaClient

        return OllamaClient(
            base_url=settings.ollama_url,
            embedding_model=settings.ollama_embedding_model,
            chat_model=settings.ollama_chat_model,
            timeout=settings.ollama_timeout_seconds,
        )
    raise ValueError(f"Unknown EMBEDDING_PROVIDER: {settings.embedding_provider}")


def _build_chat_model(settings: Settings, api_key: Optional[str]) -> Optional[ChatModel]:
    if settings.chat_provider == "none":
        return None
    if settings.chat_provider == "gemini":
        if not api_key:
            return None
        from ger.llm import GeminiChatModel

        return GeminiChatModel(
            api_key=api_key,
            model_name=settings.gemini_model_name,
            max_retries=settings.gemini_max_retries,
            retry_wait_seconds=settings.gemini_retry_wait_seconds,
            temperature=settings.gemini_temperature,
        )
    if settings.chat_provider == "ollama":
        from ger.ollama import OllamaClient

        return OllamaClient(
            base_url=settings.ollama_url,
            embedding_model=settings.ollama_embedding_model,
            chat_model=settings.ollama_chat_model,
            timeout=settings.ollama_timeout_seconds,
        )
    raise ValueError(f"Unknown CHAT_PROVIDER: {settings.chat_provider}")


def _build_tools(
    settings: Settings,
    api_key: Optional[str] = None,
    require_embedding: bool = True,
    require_chat: bool = False,
) -> RagTools:
    """Create the tool facade for CLI commands."""
    embedding_model: EmbeddingProvider = (
        _build_embedding_model(settings) if require_embedding else _NoopEmbeddingModel()
    )
    chat_model = _build_chat_model(settings, api_key) if require_chat else None
    pipeline = RAGPipeline(
        settings=settings,
        embedding_model=embedding_model,
        vector_store=VectorStore(settings.storage_path),
        chat_model=chat_model,
    )
    return RagTools(pipeline)


def _is_error(result: str) -> bool:
    return result.startswith("Error")


def command_index(args: argparse.Namespace, settings: Settings) -> int:
    """Index inline content or a file under a document id."""
    if not args.content and not args.file:
        print("Provide --content or --file.", file=sys.stderr)
        return 2
    tools = _build_tools(settings)
    result = tools.index_document(args.document_id, content=args.content, file_path=args.file)
    print(result)
    return 1 if _is_error(result) else 0


def command_search(args: argparse.Namespace, settings: Settings) -> int:
    result = _build_tools(settings).search(args.query, top_k=args.top_k)
    print(result)
    return 1 if _is_error(result) else 0


def command_context(args: argparse.Namespace, settings: Settings) -> int:
    result = _build_tools(settings).retrieve_context(args.query, top_k=args.top_k)
    print(result)
    return 1 if _is_error(result) else 0


def command_remove(args: argparse.Namespace, settings: Settings) -> int:
    result = _build_tools(settings, require_embedding=False).remove_document(args.document_id)
    print(result)
    return 1 if _is_error(result) else 0


def command_clear(_: argparse.Namespace, settings: Settings) -> int:
    """Clear all chunks from the index."""
    result = _build_tools(settings, require_embedding=False).clear_index()
    print(result)
    return 1 if _is_error(result) else 0


def command_stats(_: argparse.Namespace, settings: Settings) -> int:
    """Show stored chunk count."""
    tools = _build_tools(settings, require_embedding=False)
    print(tools.get_stats())
    for document_id in tools.pipeline.list_documents():
        print(f"- {document_id}")
    print(f"Storage path: {settings.storage_path}")
    return 0


def command_prompt(_: argparse.Namespace, settings: Settings) -> int:
    print(_build_tools(settings, require_embedding=False).get_system_prompt())
    return 0


def _tools_for_agent(args: argparse.Namespace, settings: Settings) -> Optional[RagTools]:
    api_key = args.api_key or os.getenv("GEMINI_API_KEY", "")
    tools = _build_tools(settings, api_key=api_key or None, require_chat=True)

    if tools.pipeline.count() == 0:
        print("Index is empty. Run index first.", file=sys.stderr)
        return None
    if tools.pipeline.chat_model is None:
        print("No chat model configured. Set CHAT_PROVIDER (and GEMINI_API_KEY for gemini).", file=sys.stderr)
        return None
    if args.system_prompt:
        tools.set_system_prompt(args.system_prompt)
    return tools


def command_ask(args: argparse.Namespace, settings: Settings) -> int:
    """Answer a single question against already-indexed documents."""
    tools = _tools_for_agent(args, settings)
    if tools is None:
        return 2
    answer = tools.ask_agent(args.question, top_k=args.top_k)
    print("\nAnswer:")
    print(answer)
    return 1 if _is_error(answer) else 0


def command_chat(args: argparse.Namespace, settings: Settings) -> int:
    """Start an interactive Q&A session in the terminal."""
    tools = _tools_for_agent(args, settings)
    if tools is None:
        return 2

    print("Interactive chat started. Type 'exit' or 'quit' to stop.")
    print("Commands: /prompt shows the system prompt, /prompt <text> replaces it, /reset-prompt restores it.")
    while True:
        try:
            question = input("\nYou> ").strip()
        except EOFError:
            print("\nExiting chat.")
            break

        if not question:
            continue
        if question.lower() in {"exit", "quit"}:
            print("Exiting chat.")
            break
        if question == "/prompt":
            print(tools.get_system_prompt())
            continue
        if question.startswith("/prompt "):
            print(tools.set_system_prompt(question[len("/prompt "):]))
            continue
        if question == "/reset-prompt":
            print(tools.set_system_prompt(None))
            continue

        print("\nAssistant>")
        print(tools.ask_agent(question, top_k=args.top_k))
    return 0


def build_arg_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(description="GER - Grid Enhanced Retrieval CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    index_parser = subparsers.add_parser("index", help="Chunk, embed and store a document")
    index_parser.add_argument("document_id", help="Unique identifier for the document")
    index_parser.add_argument("--content", default=None, help="Document text to index")
    index_parser.add_argument("--file", default=None, help="Path to a .txt/.md/.pdf file to index")

    for name, help_text in (
        ("search", "Rank stored chunks against a query"),
        ("context", "Print formatted context for a query"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("query", help="Query text")
        sub.add_argument("--top-k", type=int, default=None, help="Number of chunks to return")

    remove_parser = subparsers.add_parser("remove", help="Remove a document from the index")
    remove_parser.add_argument("document_id", help="Document ID to remove")

    subparsers.add_parser("clear", help="Clear the entire index")
    subparsers.add_parser("stats", help="Show index statistics")
    subparsers.add_parser("prompt", help="Print the system prompt the agent starts with")

    ask_parser = subparsers.add_parser("ask", help="Ask the agent one question")
    ask_parser.add_argument("question", help="Question text")

    chat_parser = subparsers.add_parser("chat", help="Start interactive terminal Q&A")

    for sub in (ask_parser, chat_parser):
        sub.add_argument("--top-k", type=int, default=None, help="Default number of chunks per tool call")
        sub.add_argument("--api-key", default="", help="Gemini API key (overrides GEMINI_API_KEY)")
        sub.add_argument("--system-prompt", default="", help="Override the system prompt for this session")
    return parser


COMMANDS = {
    "index": command_index,
    "search": command_search,
    "context": command_context,
    "remove": command_remove,
    "clear": command_clear,
    "stats": command_stats,
    "prompt": command_prompt,
    "ask": command_ask,
    "chat": command_chat,
}


def main(argv: Optional[list] = None) -> int:
    """CLI entrypoint."""
    load_dotenv()
    settings = Settings()
    configure_logging(settings.log_level)
    parser = build_arg_parser()
    args = parser.parse_args(argv)

    if getattr(args, "top_k", None) is None:
        setattr(args, "top_k", settings.top_k)

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return 2
    try:
        return handler(args, settings)
    except ValueError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
