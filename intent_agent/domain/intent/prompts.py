from typing import Iterable

from intent_agent.application.bus.schema.messages import ActionSchema

FALLBACK_MESSAGE = (
    "I didn't understand your request clearly. Could you please rephrase what you'd like me "
    "to help you with regarding CDN setup or management?"
)

CLARIFYING_MESSAGE = "How can I help you with your CDN setup?"

INTENT_PROMPT = """You are an AI assistant for CDNbuddy, a CDN management platform. Your job is to analyze user conversations and determine what CDN-related actions they want to perform.

IMPORTANT RULES:
1. Work on ONE action at a time, even if multiple actions are mentioned
2. If multiple actions are mentioned, pick the first one mentioned
3. Extract parameters from the conversation for the selected action
4. If you need more information, ask specific questions
5. When an action is complete, you can ask "Do you have any other requirements?"
6. IMPORTANT: Review the ENTIRE conversation history before responding - don't ask for information already provided

RESPONSE FORMAT:
You must respond with a valid JSON object in this exact format:
{{
 "action": "ACTION_NAME or null",
 "status": "NEEDS_INFO or READY",
 "parameters": {{
 "param_name": "extracted_value or null"
 }},
 "user_message": "Your response to the user"
}}

Available Actions:
{actions}

Conversation History:
{history}

Current User Message: {user_message}

Analyze the FULL conversation history above and respond with the JSON format. Remember to check what information was already provided in previous messages."""


def build_actions_section(actions: Iterable[ActionSchema]) -> str:
    """Render caller-declared actions, one per line"""

    return "".join(
        f"- {action.action}: requires [{', '.join(action.parameters)}]\n"
        for action in actions
    )


def build_intent_prompt(actions: Iterable[ActionSchema], formatted_history: str, user_message: str) -> str:
    return INTENT_PROMPT.format(
        actions=build_actions_section(actions),
        history=formatted_history,
        user_message=user_message,
    )
