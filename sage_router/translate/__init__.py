"""Translators between OpenAI, Claude and Gemini wire formats and the canonical request model."""