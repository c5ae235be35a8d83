"""
Command-line interface for the agent runtime.
"""

import argparse
import asyncio
import logging
import signal
import sys

import structlog

from .agent import AgentCoordinator, ExecutingTools, InMemoryMessageStore, Thinking
from .config import Settings, get_settings
from .llm import create_llm
from .llm.catalog import PROVIDER_MODELS

DEFAULT_SYSTEM_PROMPT = """You are a helpful AI assistant.

Use tools when you need current information or need to act. Some tools are
grouped into categories that you must activate with activate_tools before use.

Guidelines:
1. Be helpful, accurate, and concise
2. Explain your reasoning when helpful
3. If you're unsure, say so and offer to search for information"""


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format="%(message)s")
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=True),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger()


def main() -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="agent-runtime",
        description="Agent-Runtime - a reason-then-act agent over multiple LLM providers",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    chat_parser = subparsers.add_parser("chat", help="Start an interactive chat")
    chat_parser.add_argument("--provider", help="LLM provider (default: DEFAULT_PROVIDER)")
    chat_parser.add_argument("--model", help="Model name (default: the provider's default)")
    chat_parser.add_argument("--system", help="System prompt (default: a generic assistant prompt)")
    chat_parser.add_argument("--max-iterations", type=int, help="Iteration ceiling per message")

    models_parser = subparsers.add_parser("models", help="List known models")
    models_parser.add_argument("--provider", help="Only list models of this provider")

    config_parser = subparsers.add_parser("config", help="Show configuration")
    config_parser.add_argument("--check", action="store_true", help="Check configuration validity")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    settings = get_settings()
    configure_logging(settings.log_level)

    if args.command == "chat":
        asyncio.run(run_chat(settings, args.provider, args.model, args.system, args.max_iterations))
    elif args.command == "models":
        list_models(args.provider)
    elif args.command == "config":
        ok = show_config(settings, args.check)
        if not ok:
            sys.exit(1)
    else:
        parser.print_help()


def _print_state(state) -> None:
    if isinstance(state, ExecutingTools):
        print(f"  [running: {', '.join(state.tool_names)}]")
    elif isinstance(state, Thinking):
        print("  [thinking...]")


async def run_chat(
    settings: Settings,
    provider: str | None,
    model: str | None,
    system_prompt: str | None,
    max_iterations: int | None,
) -> None:
    """Interactive REPL over one conversation."""
    llm = create_llm(settings.get_llm_config(provider), settings=settings)
    if not llm.has_credentials():
        print(f"No credentials configured for provider '{llm.provider_name}'. Run: agent-runtime config --check")
        return

    store = InMemoryMessageStore()
    coordinator = AgentCoordinator(llm, settings=settings, message_store=store, max_iterations=max_iterations)
    coordinator.add_state_listener(_print_state)
    prompt = system_prompt or DEFAULT_SYSTEM_PROMPT
    logger.info("Chat session started", provider=llm.provider_name, conversation_id=coordinator.conversation_id)
    loop = asyncio.get_running_loop()

    print(f"\n=== {settings.app_name} ({llm.provider_name}: {model or llm.model}) ===")
    print("Commands: /reset, /summarize, /history, /quit. Ctrl-C cancels a running reply.\n")

    try:
        while True:
            try:
                line = await asyncio.to_thread(input, "you> ")
            except (EOFError, KeyboardInterrupt):
                print()
                break

            text = line.strip()
            if not text:
                continue
            if text in ("/quit", "/exit"):
                break
            if text == "/reset":
                coordinator.reset()
                print("Conversation cleared.")
                continue
            if text == "/summarize":
                result = await coordinator.force_summarize(model)
                if result.summarized:
                    print(f"Summarized {result.original_message_count} messages into {result.new_message_count}.")
                else:
                    print("Nothing to summarize yet.")
                continue
            if text == "/history":
                for message in coordinator.history:
                    label = "summary" if message.is_summary else message.role
                    print(f"  {label}: {message.text[:120]}")
                continue

            try:
                loop.add_signal_handler(signal.SIGINT, coordinator.cancel)
            except NotImplementedError:
                # Signal handlers are unavailable on some platforms
                pass
            try:
                result = await coordinator.execute(text, prompt, model, max_iterations=max_iterations)
            finally:
                try:
                    loop.remove_signal_handler(signal.SIGINT)
                except NotImplementedError:
                    pass

            if result.success:
                print(f"\nassistant> {result.output}\n")
            else:
                print(f"\n[error] {result.error}\n")
    finally:
        coordinator.close()
        await llm.aclose()


def list_models(provider: str | None = None) -> None:
    """Print the model catalog with context windows."""
    providers = [provider] if provider else [p for p in PROVIDER_MODELS if p != "openai_responses"]
    for name in providers:
        models = PROVIDER_MODELS.get(name)
        if models is None:
            print(f"Unknown provider: {name}")
            continue
        print(f"\n{name}:")
        for info in models:
            thinking = " (thinking)" if info.supports_thinking else ""
            print(f"  {info.name:<40} {info.context_window:>9,} tokens{thinking}")


def show_config(settings: Settings, check: bool) -> bool:
    """Show current configuration. Returns False when the check finds errors."""

    def mask(value: str) -> str:
        if not value:
            return "(not set)"
        return value[:4] + "..." + value[-4:] if len(value) > 10 else "****"

    print(f"\n=== {settings.app_name} Configuration ===\n")

    print("LLM Providers:")
    print(f"  Default: {settings.default_provider}")
    print(f"  Default Model: {settings.default_model or '(provider default)'}")
    print(f"  OpenAI Key: {mask(settings.openai_api_key)}")
    print(f"  Anthropic Key: {mask(settings.anthropic_api_key)}")
    print(f"  Gemini Key: {mask(settings.gemini_api_key)}")
    print(f"  OpenRouter Key: {mask(settings.openrouter_api_key)}")
    print(f"  Code Assist Token: {mask(settings.code_assist_token)}")
    print(f"  Request Timeout: {settings.request_timeout:g}s")

    print("\nAgent:")
    print(f"  Max Iterations: {settings.max_iterations}")
    print(f"  Summarization Threshold: {settings.summarization_threshold:.0%}")
    print(f"  Recent Messages Kept: {settings.keep_recent_messages}")
    print(f"  Native Web Search: {settings.native_web_search}")

    print("\nTools:")
    print(f"  Tavily Key: {mask(settings.tavily_api_key)}")
    print(f"  Tool Timeout: {settings.tool_timeout:g}s")
    print(f"  Parallel Execution: {settings.parallel_tool_execution}")

    if not check:
        return True

    print("\n=== Configuration Check ===\n")
    errors = []
    warnings = []

    default_config = settings.get_llm_config()
    if not default_config.api_key:
        errors.append(f"No API key for the default provider '{settings.default_provider}'")
    if settings.default_provider == "code_assist" and not settings.code_assist_project:
        errors.append("CODE_ASSIST_PROJECT is required for the code_assist provider")
    if not settings.tavily_api_key:
        warnings.append("TAVILY_API_KEY not set - web_search will fail unless native web search is used")

    if errors:
        print("Errors:")
        for e in errors:
            print(f"   - {e}")

    if warnings:
        print("Warnings:")
        for w in warnings:
            print(f"   - {w}")

    if not errors and not warnings:
        print("Configuration looks good!")
    elif not errors:
        print("\nConfiguration is valid (with warnings)")
    else:
        print("\nConfiguration has errors - fix them before starting")

    return not errors


if __name__ == "__main__":
    main()
