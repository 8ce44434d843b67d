"""
Core Modules
=============
Contains the core business logic:
- verification.py   - rule-based and LLM-backed product verification
- conversations.py  - conversation summaries and mark-as-read on open
- chat_responder.py - keyword and LLM-backed help chatbot
"""
