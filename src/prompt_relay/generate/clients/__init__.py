# Upstream model clients: OpenAI-compatible and a local echo client.
