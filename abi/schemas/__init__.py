"""
schemas/ — Pydantic models for the Abi API and its domain objects

Request bodies, the typed supplier / intent / citation / category objects
that flow through the chat pipeline, and the shared error envelope.
Wire names are camelCase; Python attribute names are snake_case.
"""
