"""
Response Generator
Builds the impersonation prompt from ranked context and calls the completion
service behind a hard timeout.
"""
import asyncio
from typing import List, Sequence

from errors import CompletionError, GenerationError, GenerationTimeoutError
from models import Message, RankedContextItem
from prompt_helpers import STYLE_ASPECTS, format_exemplars, format_numbered_list

DEFAULT_TIMEOUT = 10.0
DEFAULT_TEMPERATURE = 0.7


IMPERSONATION_PROMPT = """You are impersonating a user named {username}. Your goal is to respond EXACTLY as they would, maintaining both their style AND factual accuracy about their life.

Here are their previous messages, ordered by relevance to the current question. Study these carefully to understand both HOW they communicate and WHAT they say about their life:

{exemplars}

Key aspects to copy:
{aspects}

The most important rule: NEVER contradict facts about their life that are mentioned in the messages above.

Now, respond to this message AS IF YOU WERE THEM:
{message}

Important:
- Use their actual words and mannerisms from the example messages
- Stay 100% consistent with facts about their life from the messages
- If you're unsure about a fact, refer to it indirectly or ask a question instead

Response as {username}:"""


def build_prompt(message: str, username: str, context: Sequence[str]) -> str:
    """
    Assemble the impersonation prompt.

    Args:
        message: Incoming message to answer
        username: Persona to impersonate
        context: Exemplar message contents, most relevant first
    """
    return IMPERSONATION_PROMPT.format(
        username=username,
        exemplars=format_exemplars(context),
        aspects=format_numbered_list(STYLE_ASPECTS),
        message=message,
    )


def context_contents(items: Sequence) -> List[str]:
    """Contents of RankedContextItems or plain Messages, in order."""
    contents = []
    for item in items:
        if isinstance(item, RankedContextItem):
            contents.append(item.content)
        elif isinstance(item, Message):
            contents.append(item.content)
        else:
            raise TypeError(f"Unsupported context item: {type(item).__name__}")
    return contents


class ResponseGenerator:
    def __init__(
        self,
        completion_client,
        timeout: float = DEFAULT_TIMEOUT,
        temperature: float = DEFAULT_TEMPERATURE,
    ):
        self.completion_client = completion_client
        self.timeout = timeout
        self.temperature = temperature

    async def generate(self, message: str, username: str, context: Sequence) -> str:
        """
        Generate a reply as `username`.

        Raises:
            GenerationTimeoutError: No answer within the timeout
            GenerationError: The completion service failed
        """
        prompt = build_prompt(message, username, context_contents(context))
        print(f"[Generator] username={username} context_messages={len(context)} prompt_chars={len(prompt)}")

        try:
            text = await asyncio.wait_for(
                self.completion_client.complete(prompt, temperature=self.temperature),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            print(f"[Generator] username={username} status=timeout timeout={self.timeout}")
            raise GenerationTimeoutError(self.timeout) from e
        except CompletionError as e:
            print(f"[Generator] username={username} status=failed error={e}")
            raise GenerationError("Failed to generate response") from e

        return text.strip()
