"""
zapdesk: WhatsApp support console with a menu chatbot, an LLM assistant and a
pool of human attendants.
"""

__version__ = "0.1.0"
