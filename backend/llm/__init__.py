"""LLM layer: Ollama chat clients, prompts and the completion service."""

from .completion import CompletionService, create_completion_service, parse_title_summary

__all__ = ["CompletionService", "create_completion_service", "parse_title_summary"]
