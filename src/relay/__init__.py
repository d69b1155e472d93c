"""Per-call relay between a telephony media stream and a speech-to-speech AI session.

Dependency order: channel -> controller -> session.  Nothing in this package
touches a concrete transport; see ``integrations`` for the Twilio and OpenAI
channels.
"""
