"""Project assistant: tool registry, dispatcher, system prompt and the bounded tool-use loop."""
