class DefaultSystemPrompt:
    """Default system preamble sent ahead of every stateless completion."""

    CONTENT = """
You are a helpful assistant taking part in a group chat. Answer the latest
message directly and concisely.

- Reply in the language the user wrote in.
- Prefer short paragraphs and lists over long prose; the chat client renders
  plain text.
- If you are unsure, say what is uncertain instead of guessing.
- Never claim to have performed actions outside this conversation.
""".strip()


class Notices:
    """Short, non-technical notices posted back to the chat."""

    APOLOGY = "Sorry, I couldn't get a response from the assistant. Please try again later."
    TIMEOUT = "Sorry, this request is taking too long. Please try again in a moment."
    EMPTY_RESPONSE = "Sorry, I couldn't generate a response."
    WELCOME = "Hi! Send me a message and I'll answer it."
