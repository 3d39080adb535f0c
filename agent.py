"""
LLM access for tool runs and tool generation.
"""
import os
import logging
from typing import List, Optional

from openai import OpenAI
from pydantic import BaseModel

logger = logging.getLogger(__name__)

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

_client: Optional[OpenAI] = None


class AgentUnavailable(RuntimeError):
    pass


def get_client() -> OpenAI:
    global _client
    if _client is None:
        if not OPENAI_API_KEY:
            raise AgentUnavailable("OPENAI_API_KEY is not configured")
        _client = OpenAI(api_key=OPENAI_API_KEY)
    return _client


# ------------------- Prompts -------------------

def get_system_prompt(system_instructions: str) -> str:
    # formatting rules appended to every tool's own instructions
    return (
        f"{system_instructions}\n\n"
        "Your response should start like \"Hi <user_name>! Based on your ...\"\n"
        "Return the response in markdown format."
    )


CREATE_TOOL_SYSTEM_PROMPT = """\
You are a System Instruction Designer AI.
Your role is to generate system instructions for a custom AI assistant (tool/persona) and the questions that should be answered to generate necessary information.
User will provide you with a title, a short description and expectations from the tool/persona. The assistant (also known as tool/persona) must be useful, domain-appropriate, and capable of delivering high-quality information with structured responses.

Your task is to:

1. Interpret the user's expectation (usually provided as a title and/or a short description, and expectations from the tool/persona).
2. Write a clear and actionable set of system instructions that define:
    - The role the assistant is playing (e.g., expert, strategist, analyst, writer, etc.).
    - The input it expects from users (via questions and answers).
    - The output it should generate (in markdown format).
3. Generate 3 high-quality, relevant questions the assistant should ask the user to collect the required input.
    - If the user specifies a number of questions, match that number, otherwise default to 3 questions.
    - Questions should be concise, user-friendly and easy to understand.

Return system_instructions, the list of questions and number_of_questions.

Example input:
Title: AI & Tech Use Cases
Description: Identify Concrete Use Cases!
Expectations: A tool that identifies concrete use cases of a technology across a sector and a specific area.

Example system instructions:
You are an expert technology strategist. Based on the provided questions and their answers by the user, you need to identify the user's Technology, Sector of Activity, and Specific Area.
Using that information, generate a detailed and well-structured table that outlines valuable use cases of the user's technology across their sector and preferred area.
For each value chain component, include a brief title, a concise description of relevant use cases and the sub-technologies involved.
Format the table clearly and use emojis to improve readability and presentation quality.

Example questions:
1. What is the technology you want to focus on?
2. For what sector of activity? or Name of Company?
3. For what specific area?
"""


def format_answers(questions: List[dict], user_name: str) -> str:
    lines = [
        f"Question {i}: {q['question']} \n Answer: {q['answer']}"
        for i, q in enumerate(questions, start=1)
    ]
    return f"Hi {user_name}! " + "\n".join(lines)


# ------------------- Calls -------------------

class GeneratedTool(BaseModel):
    system_instructions: str
    questions: List[str]
    number_of_questions: int


def generate_response(system_instructions: str, questions: List[dict], user_name: str) -> str:
    completion = get_client().chat.completions.create(
        model=OPENAI_MODEL,
        messages=[
            {"role": "system", "content": get_system_prompt(system_instructions)},
            {"role": "user", "content": format_answers(questions, user_name)},
        ],
    )
    return (completion.choices[0].message.content or "").strip()


def generate_tool(title: str, description: str, expectations: str) -> Optional[GeneratedTool]:
    response = get_client().responses.parse(
        model=OPENAI_MODEL,
        input=[
            {"role": "system", "content": CREATE_TOOL_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": f"Title: {title}\nDescription: {description}\nExpectations: {expectations}",
            },
        ],
        text_format=GeneratedTool,
    )
    generated = response.output_parsed
    if generated is None:
        logger.warning("Tool generation returned no parsed output for %r", title)
    return generated
