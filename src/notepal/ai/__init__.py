"""Language-model client, prompts, tools and the agent loop."""
