"""Agent package: Gemini tool-calling over diagram sessions."""
