"""Sect Chronicle — LLM-driven narrative turn engine for a cultivation RPG."""
