"""Prompt templates for conversation condensation."""

SUMMARY_SYSTEM_PROMPT = (
    "You write concise summaries of dialogues. Output only the summary, no preamble."
)

CONDENSE_PROMPT = """Your task: write a short summary of the dialogue below so its context can be kept.

Rules:
1. Keep key decisions, conclusions and agreements
2. Mention important names, dates and numbers
3. Preserve the chronology of events
4. Ignore greetings and filler phrases
5. At most {max_tokens} tokens
6. Format: connected prose, no bullet list

Messages to condense:
{transcript}

Summary:""".strip()
