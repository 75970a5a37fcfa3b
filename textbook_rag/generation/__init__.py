"""Answer generation from retrieved chunks."""

from textbook_rag.generation.providers import GroqLLMProvider, LLMProvider
from textbook_rag.generation.synthesizer import AnswerSynthesizer, build_prompt

__all__ = ["AnswerSynthesizer", "GroqLLMProvider", "LLMProvider", "build_prompt"]
