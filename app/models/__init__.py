from app.models.subscription import RazorpaySubscription
from app.models.chatbot_interaction import ChatbotInteraction

__all__ = [
    "RazorpaySubscription",
    "ChatbotInteraction",
]
