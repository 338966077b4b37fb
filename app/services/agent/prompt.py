"""Agent prompt templates and tool schemas."""
from datetime import datetime
from typing import Any, Dict, List, Optional

EXTRACT_NAME = "extract_name"
EXTRACT_APPOINTMENT_TIME = "extract_appointment_time"
SCHEDULE_APPOINTMENT = "schedule_appointment"

ACTION_CHECK = "check"
ACTION_SCHEDULE = "schedule"
ACTION_SUGGEST_NEXT = "suggest_next"


def get_system_prompt(
    office_name: str,
    caller_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """Generate system prompt for the receptionist."""
    now = now or datetime.now()
    prompt = f"""You are a professional and friendly AI dental receptionist for {office_name}. Your primary role is to:

- Assist patients with scheduling appointments: Provide available dates and times, and help with rescheduling.
- Provide office information: Share details about office hours, location, services offered and insurance accepted.
- Onboard new patients: Collect necessary information such as name and contact details.
- Respond to general inquiries: Answer questions about dental procedures and office policies. Direct complex queries to the appropriate team member.
- Handle patient information with confidentiality.

Communication Style:

- Friendly and Approachable: Greet patients warmly with a positive tone.
- Clear and Concise: You are speaking on the phone. Keep replies to one or two short sentences, with no lists or formatting.
- Patient and Understanding: Show empathy, especially with anxious or upset patients.

Today is {now.strftime('%A, %B %d, %Y')} and the time is {now.strftime('%H:%M')}.
When a caller mentions a date or time, resolve it to an ISO 8601 local time such as {now.strftime('%Y-%m-%d')}T14:30:00.
Use schedule_appointment with action "check" when they ask about a time, "schedule" once they confirm it,
and "suggest_next" when they want the next opening."""

    if not caller_name:
        prompt += (
            "\nIMPORTANT: We don't have the caller's name yet. "
            "Please ask for their name if they haven't provided it."
        )
    else:
        prompt += f"\nThe caller's name is {caller_name}."
    return prompt


def get_tools() -> List[Dict[str, Any]]:
    """Function schemas offered to the model."""
    return [
        {
            "type": "function",
            "function": {
                "name": EXTRACT_NAME,
                "description": "Extract a person's name when they introduce themselves",
                "parameters": {
                    "type": "object",
                    "properties": {
                        "name": {
                            "type": "string",
                            "description": "The extracted name from the conversation",
                        },
                        "confidence": {
                            "type": "boolean",
                            "description": "Whether the name was confidently extracted",
                        },
                    },
                    "required": ["name", "confidence"],
                },
            },
        },
        {
            "type": "function",
            "function": {
                "name": EXTRACT_APPOINTMENT_TIME,
                "description": "Extract an appointment time from the caller's request",
                "parameters": {
                    "type": "object",
                    "properties": {
                        "appointment_time": {
                            "type": "string",
                            "description": "The extracted appointment time in ISO 8601 format",
                        },
                        "confidence": {
                            "type": "boolean",
                            "description": "Whether the time was confidently extracted",
                        },
                    },
                    "required": ["appointment_time", "confidence"],
                },
            },
        },
        {
            "type": "function",
            "function": {
                "name": SCHEDULE_APPOINTMENT,
                "description": "Check, schedule, or find the next available dental appointment time",
                "parameters": {
                    "type": "object",
                    "properties": {
                        "appointment_time": {
                            "type": "string",
                            "description": "The requested appointment time in ISO 8601 format",
                        },
                        "action": {
                            "type": "string",
                            "enum": [ACTION_CHECK, ACTION_SCHEDULE, ACTION_SUGGEST_NEXT],
                            "description": (
                                "Whether to check availability, schedule the appointment, "
                                "or find the next available time"
                            ),
                        },
                    },
                    "required": ["appointment_time", "action"],
                },
            },
        },
    ]


def get_tool_choice(caller_name: Optional[str]) -> Any:
    """Force name extraction until the caller's name is known."""
    if caller_name:
        return "auto"
    return {"type": "function", "function": {"name": EXTRACT_NAME}}
