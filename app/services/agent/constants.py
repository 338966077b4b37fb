"""Canned replies used by the receptionist agent."""

DID_NOT_CATCH_REPLY = "I did not catch that. Could you please repeat?"
DEFAULT_REPLY = "How can I assist you today?"
MODEL_FAILURE_REPLY = "Sorry, I am unable to process your request at the moment."
FUNCTION_FAILURE_REPLY = (
    "I apologize, but I'm having trouble processing your appointment request. "
    "Could you please try again?"
)

NAME_ACKNOWLEDGEMENT = "Nice to meet you, {name}! How can I assist you today?"

CONFIRM_TIME_REPLY = (
    "Just to confirm, you'd like an appointment on {time}. "
    "Would you like me to check if that time is available?"
)

SLOT_AVAILABLE_REPLY = (
    "Yes, {time} is available. Would you like me to schedule this appointment for you?"
)
SLOT_UNAVAILABLE_REPLY = (
    "I apologize, but {time} is not available. "
    "Would you like me to find the next available time?"
)

NEXT_SLOT_REPLY = (
    "The next available appointment time is {time}. "
    "Would you like to schedule this time instead?"
)
NO_NEXT_SLOT_REPLY = (
    "I'm having trouble finding the next available appointment time. "
    "Could you please try a different date or time?"
)

BOOKED_REPLY = (
    "Perfect! I've scheduled your appointment for {time}. "
    "You'll receive a confirmation shortly. Is there anything else I can help you with?"
)
BOOKING_FAILED_REPLY = (
    "I apologize, but I encountered an error while scheduling your appointment. "
    "Could you please try again?"
)
SLOT_JUST_TAKEN_REPLY = (
    "I apologize, but that time was just taken. The next available time is {time}. "
    "Would you like this time instead?"
)
SLOT_NO_LONGER_AVAILABLE_REPLY = (
    "I apologize, but that time is no longer available and I couldn't find another opening. "
    "Could you please provide another preferred time?"
)
