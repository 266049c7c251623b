"""
services/ — Business logic for Abi

Chat pipeline (classifier → router → fetcher → synthesizer → validator),
the credit ledger and approval workflow, security primitives, auth and
interests. Routers stay thin and call into these modules.
"""
