"""Assistant layer: prompts, extraction, tools and the LangGraph tool loop."""
